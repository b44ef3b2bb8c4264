"""Summary and synthesis prompts: per-reviewer wrap-up and the anonymised final brief."""

import random
from collections.abc import Sequence

from magpie.models import Message, ReviewerSummary


def summary_instruction(reviewer_id: str) -> str:
    return (
        f"The debate is over. As {reviewer_id}, write a concise summary of your final position: "
        "the issues you consider important and their severity, and where you agree or disagree "
        "with the other reviewers. Only include points you still stand by."
    )


def _anonymize_summaries(
    summaries: Sequence[ReviewerSummary],
    rng: random.Random | None = None,
) -> tuple[str, dict[str, str]]:
    """Shuffle summaries and label them anonymously.

    Returns:
        (anonymized_block, label→reviewer_id mapping)
    """
    shuffled = list(summaries)
    (rng or random).shuffle(shuffled)
    labels = [chr(ord("A") + i) for i in range(len(shuffled))]
    parts = [f"--- Reviewer {label} ---\n{s.summary}"
             for label, s in zip(labels, shuffled)]
    mapping = {label: s.reviewer_id for label, s in zip(labels, shuffled)}
    return "\n\n".join(parts), mapping


def build_synthesis_messages(
    subject_id: str,
    summaries: Sequence[ReviewerSummary],
    rng: random.Random | None = None,
) -> list[Message]:
    """The summarizer sees only the anonymised summaries, never the full debate."""
    if summaries:
        block, _ = _anonymize_summaries(summaries, rng)
    else:
        block = "(No reviewer summaries were produced.)"
    prompt = (
        f"Code review of {subject_id}. The review panel has finished its debate. "
        f"Here are the reviewers' final summaries:\n\n{block}\n\n"
        "Write the final review conclusion."
    )
    return [Message("user", prompt)]
