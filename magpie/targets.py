"""Review targets: collect a diff from git, or point the analyzer at a PR."""

import logging
import subprocess
from pathlib import Path

from magpie.models import ReviewSubject

logger = logging.getLogger(__name__)


class TargetError(Exception):
    """Raised when the change under review cannot be collected."""


def _git(*args: str) -> str:
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as exc:
        raise TargetError("git is not installed") from exc
    except subprocess.CalledProcessError as exc:
        raise TargetError(f"git {' '.join(args)} failed: {exc.stderr.strip()}") from exc
    return result.stdout


def local_diff() -> str:
    """Staged plus unstaged changes in the working tree."""
    diff = _git("diff", "--cached") + _git("diff")
    if not diff.strip():
        raise TargetError("No local changes found")
    return diff


def default_base_branch() -> str:
    try:
        ref = _git("symbolic-ref", "refs/remotes/origin/HEAD").strip()
    except TargetError:
        return "origin/main"
    return ref.removeprefix("refs/remotes/") or "origin/main"


def branch_diff(base: str | None = None) -> str:
    """Changes on the current branch since it forked from base."""
    base = base or default_base_branch()
    diff = _git("diff", f"{base}...HEAD")
    if not diff.strip():
        raise TargetError(f"No changes found between {base} and HEAD")
    return diff


def current_branch() -> str:
    return _git("branch", "--show-current").strip()


def files_diff(files: list[str]) -> str:
    """Diff for the given files, or their full contents when they are unchanged."""
    diff = _git("diff", "--cached", "--", *files) + _git("diff", "--", *files)
    if diff.strip():
        return diff

    parts: list[str] = []
    for name in files:
        path = Path(name)
        if not path.is_file():
            logger.warning("Skipping missing file: %s", name)
            continue
        parts.append(f"=== {name} ===\n{path.read_text(encoding='utf-8', errors='replace')}\n")
    if not parts:
        raise TargetError("No changes or content found for specified files")
    return "\n".join(parts)


def diff_prompt() -> str:
    return "Please review the following code changes. Analyze them and provide your feedback."


def pr_prompt(pr: str) -> str:
    return (
        f"Please review PR #{pr}. Get the PR details and diff using any method available to you, "
        "then analyze the changes."
    )


def build_subject(
    pr: str | None = None,
    *,
    local: bool = False,
    branch: str | None = None,
    files: list[str] | None = None,
) -> ReviewSubject:
    """Resolve exactly one target mode into a ReviewSubject.

    ``branch`` is None when the mode is off and "" for "detect the base".
    """
    modes = [local, branch is not None, bool(files), pr is not None]
    if sum(modes) != 1:
        raise TargetError("Specify exactly one of: a PR number, --local, --branch, or --files")

    if local:
        return ReviewSubject("Local Changes", diff_prompt(), local_diff())
    if branch is not None:
        diff = branch_diff(branch or None)
        return ReviewSubject(f"Branch: {current_branch()}", diff_prompt(), diff)
    if files:
        return ReviewSubject(f"Files: {', '.join(files)}", diff_prompt(), files_diff(files))
    return ReviewSubject(f"PR #{pr}", pr_prompt(pr))
