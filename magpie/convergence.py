"""Advisory convergence check: has the review panel stopped disagreeing?"""

import logging
import re
import string
from collections.abc import Awaitable, Callable, Sequence

from magpie.models import Message, Participant, Turn
from magpie.providers.base import ProviderError

logger = logging.getLogger(__name__)

AFFIRMATIVE = frozenset({"yes", "y", "true", "converged", "consensus", "agreed", "agree"})
NEGATIVE = frozenset({"no", "n", "false", "not", "continue", "disagree", "diverged"})

# (round_number, reviewer turns of that round) -> converged?
ConvergenceJudge = Callable[[int, Sequence[Turn]], Awaitable[bool]]

_FIRST_WORD = re.compile(r"[A-Za-z]+")

DEFAULT_CONVERGENCE_PROMPT = (
    "You are a neutral moderator of a code review debate. Below are the reviewers' remarks "
    "from round {round}.\n\n{remarks}\n\n"
    "Have the reviewers reached substantive agreement, with no materially new objections "
    "raised in this round? Answer with a single word on the first line: YES or NO."
)

PROMPT_FIELDS = frozenset({"round", "remarks"})


def check_prompt_template(template: str) -> None:
    """Raise ValueError unless the template formats with only {round} and {remarks}.

    {remarks} is required; literal braces must be doubled.
    """
    try:
        fields = {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
    except ValueError as exc:
        raise ValueError(f"Unparsable convergence prompt: {exc}") from exc
    unknown = fields - PROMPT_FIELDS
    if unknown:
        raise ValueError(
            f"Unknown placeholder(s) in convergence prompt: {', '.join(sorted(unknown))} "
            "(use {{ and }} for literal braces)"
        )
    if "remarks" not in fields:
        raise ValueError("Convergence prompt must contain the {remarks} placeholder")


def parse_verdict(
    response: str,
    affirmative: frozenset[str] = AFFIRMATIVE,
    negative: frozenset[str] = NEGATIVE,
) -> bool | None:
    """Read the first word of the first non-blank line.

    Returns True / False for a recognised verdict, None when ambiguous.
    """
    for line in response.splitlines():
        if not line.strip():
            continue
        match = _FIRST_WORD.search(line)
        if not match:
            return None
        word = match.group(0).lower()
        if word in affirmative:
            return True
        if word in negative:
            return False
        return None
    return None


def format_remarks(turns: Sequence[Turn]) -> str:
    return "\n\n".join(f"[{t.participant_id}]\n{t.content}" for t in turns)


class BackendConvergenceJudge:
    """Ask a participant's backend whether the round shows agreement.

    The answer is never added to the transcript. Ambiguous answers and
    backend failures both count as "not converged".
    """

    def __init__(
        self,
        participant: Participant,
        prompt_template: str,
        affirmative: frozenset[str] = AFFIRMATIVE,
        negative: frozenset[str] = NEGATIVE,
    ) -> None:
        check_prompt_template(prompt_template)
        self._participant = participant
        self._prompt_template = prompt_template
        self._affirmative = affirmative
        self._negative = negative

    async def __call__(self, round_number: int, round_turns: Sequence[Turn]) -> bool:
        prompt = self._prompt_template.format(round=round_number, remarks=format_remarks(round_turns))
        try:
            response = await self._participant.backend.chat([Message("user", prompt)])
        except ProviderError as exc:
            logger.warning("Convergence check failed in round %d, continuing debate: %s", round_number, exc)
            return False

        verdict = parse_verdict(response, self._affirmative, self._negative)
        if verdict is None:
            logger.debug("Convergence verdict indeterminate in round %d: %r", round_number, response[:80])
            return False
        return verdict
