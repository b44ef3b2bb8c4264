"""Pure dataclasses for the Magpie review pipeline. No logic beyond enums."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from magpie.providers.base import ChatProvider

OPERATOR_ID = "operator"
CONVERGENCE_CHECK_ID = "convergence-check"   # pseudo-speaker for on_waiting


class Role(str, Enum):
    ANALYZER = "analyzer"
    REVIEWER = "reviewer"
    SUMMARIZER = "summarizer"
    OPERATOR = "operator"


class Phase(str, Enum):
    ANALYSIS = "analysis"
    DEBATE = "debate"
    SUMMARY = "summary"
    SYNTHESIS = "synthesis"


@dataclass(frozen=True)
class Message:
    role: str              # "user" or "assistant"
    content: str


@dataclass(frozen=True)
class ReviewSubject:
    subject_id: str        # PR number, "Local Changes", "Branch: feature-x", ...
    prompt: str
    diff: str | None = None


@dataclass(frozen=True)
class Participant:
    id: str
    backend: "ChatProvider"
    system_prompt: str


@dataclass(frozen=True)
class Turn:
    participant_id: str
    role: Role
    phase: Phase
    content: str
    round: int | None = None


@dataclass
class RoundState:
    number: int
    reviewer_turns: list[Turn] = field(default_factory=list)
    converged: bool = False


@dataclass
class UsageRecord:
    participant_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost: float = 0.0


@dataclass(frozen=True)
class ReviewerSummary:
    reviewer_id: str
    summary: str


@dataclass(frozen=True)
class DebateOptions:
    max_rounds: int
    interactive: bool = False
    check_convergence: bool = True


@dataclass(frozen=True)
class RunResult:
    subject_id: str
    analysis: str
    transcript: tuple[Turn, ...]
    summaries: tuple[ReviewerSummary, ...]
    final_conclusion: str
    usage: tuple[UsageRecord, ...]
    converged_at_round: int | None = None
    rounds_run: int = 0             # includes a round cut short by the operator
    interrupted: bool = False      # operator quit early
    total_duration_sec: float = 0.0
