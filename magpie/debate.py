"""Debate orchestration: analysis, reviewer rounds, convergence, summaries, synthesis."""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum

from magpie.convergence import DEFAULT_CONVERGENCE_PROMPT, BackendConvergenceJudge, ConvergenceJudge
from magpie.models import (
    CONVERGENCE_CHECK_ID,
    OPERATOR_ID,
    DebateOptions,
    Message,
    Participant,
    Phase,
    ReviewerSummary,
    ReviewSubject,
    Role,
    RoundState,
    RunResult,
    Turn,
    UsageRecord,
)
from magpie.synthesis import build_synthesis_messages, summary_instruction
from magpie.usage import estimate_cost, estimate_input_tokens, estimate_tokens

logger = logging.getLogger(__name__)

_CONTINUE_WORDS = frozenset({"", "y", "yes", "c", "continue", "ok"})
_QUIT_WORDS = frozenset({"q", "quit", "exit"})


class TurnError(Exception):
    """A turn produced no usable output. Fatal to the run."""

    def __init__(self, participant_id: str, phase: Phase, message: str) -> None:
        self.participant_id = participant_id
        self.phase = phase
        super().__init__(f"[{participant_id}] {phase.value} turn failed: {message}")


class OperatorAction(Enum):
    CONTINUE = "continue"
    INTERJECT = "interject"
    QUIT = "quit"


def parse_operator_input(answer: str | None) -> tuple[OperatorAction, str]:
    """Map raw operator input to (action, interjection text)."""
    text = (answer or "").strip()
    lowered = text.lower()
    if lowered in _CONTINUE_WORDS:
        return OperatorAction.CONTINUE, ""
    if lowered in _QUIT_WORDS:
        return OperatorAction.QUIT, ""
    return OperatorAction.INTERJECT, text


def build_subject_message(subject: ReviewSubject) -> str:
    if subject.diff:
        return f"{subject.prompt}\n\n```diff\n{subject.diff}\n```"
    return subject.prompt


def debate_instruction(reviewer_id: str, round_number: int, max_rounds: int) -> str:
    return (
        f"Round {round_number}/{max_rounds}. You are {reviewer_id}. Review the change from your "
        "perspective and respond to the other reviewers: challenge points you disagree with, "
        "confirm the ones you share, and raise anything they missed. Do not repeat yourself."
    )


def _merge_adjacent(messages: list[Message]) -> list[Message]:
    """Join consecutive same-role messages; some APIs require strict alternation."""
    merged: list[Message] = []
    for msg in messages:
        if merged and merged[-1].role == msg.role:
            merged[-1] = Message(msg.role, f"{merged[-1].content}\n\n{msg.content}")
        else:
            merged.append(msg)
    return merged


def build_turn_messages(
    briefing: str,
    transcript: Sequence[Turn],
    speaker_id: str,
    instruction: str,
) -> list[Message]:
    """Conversation as seen by one reviewer.

    The speaker's own debate turns are replayed as assistant messages; every
    other reviewer and the operator speak as tagged user messages. Summary and
    synthesis turns are never part of a reviewer's context.
    """
    messages = [Message("user", briefing)]
    for turn in transcript:
        if turn.phase is not Phase.DEBATE and turn.role is not Role.OPERATOR:
            continue
        if turn.participant_id == speaker_id:
            messages.append(Message("assistant", turn.content))
        else:
            messages.append(Message("user", f"[{turn.participant_id}]: {turn.content}"))
    messages.append(Message("user", instruction))
    return _merge_adjacent(messages)


class DebateCoordinator:
    """Runs one review debate at a time over a fixed panel.

    Turns are strictly sequential: every turn's context depends on the full
    output of the turns before it. Fragments are forwarded to ``on_message``
    as they stream in; the transcript only sees completed turns.
    """

    def __init__(
        self,
        analyzer: Participant,
        reviewers: Sequence[Participant],
        summarizer: Participant,
        options: DebateOptions,
        *,
        convergence_judge: ConvergenceJudge | None = None,
        on_waiting: Callable[[str], None] | None = None,
        on_message: Callable[[str, str], None] | None = None,
        on_round_complete: Callable[[int, bool], None] | None = None,
        on_interactive: Callable[[], Awaitable[str | None]] | None = None,
    ) -> None:
        if options.max_rounds < 0:
            raise ValueError(f"max_rounds must not be negative, got {options.max_rounds}")
        if options.interactive and on_interactive is None:
            raise ValueError("interactive mode needs an on_interactive callback")

        ids = [analyzer.id, summarizer.id, *(r.id for r in reviewers)]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Participant ids must be unique, duplicated: {', '.join(duplicates)}")
        reserved = {OPERATOR_ID, CONVERGENCE_CHECK_ID} & set(ids)
        if reserved:
            raise ValueError(f"Reserved participant id(s): {', '.join(sorted(reserved))}")

        self._analyzer = analyzer
        self._reviewers = list(reviewers)
        self._summarizer = summarizer
        self._options = options
        self._judge = convergence_judge or BackendConvergenceJudge(analyzer, DEFAULT_CONVERGENCE_PROMPT)
        self._on_waiting = on_waiting
        self._on_message = on_message
        self._on_round_complete = on_round_complete
        self._on_interactive = on_interactive
        self._reset()

    def _reset(self) -> None:
        self._transcript: list[Turn] = []
        self._usage: dict[str, UsageRecord] = {}  # insertion order == first-speak order
        self._converged_at_round: int | None = None
        self._rounds_run = 0
        self._quit = False

    async def run(self, subject: ReviewSubject) -> RunResult:
        """Run every phase for one subject and return the aggregated result.

        Raises:
            TurnError: If any turn fails or comes back empty.
        """
        self._reset()
        start = time.monotonic()

        opening = build_subject_message(subject)
        logger.info("Analysis of %s by %s", subject.subject_id, self._analyzer.id)
        analysis_turn = await self._take_turn(
            self._analyzer, Role.ANALYZER, Phase.ANALYSIS, [Message("user", opening)],
        )
        analysis = analysis_turn.content
        briefing = f"{opening}\n\n## Analysis\n\n{analysis}"

        await self._debate(briefing)
        summaries = await self._summarize(briefing)

        logger.info("Synthesis by %s over %d summaries", self._summarizer.id, len(summaries))
        synthesis_turn = await self._take_turn(
            self._summarizer,
            Role.SUMMARIZER,
            Phase.SYNTHESIS,
            build_synthesis_messages(subject.subject_id, summaries),
        )
        conclusion = synthesis_turn.content

        return RunResult(
            subject_id=subject.subject_id,
            analysis=analysis,
            transcript=tuple(self._transcript),
            summaries=tuple(summaries),
            final_conclusion=conclusion,
            usage=tuple(
                UsageRecord(u.participant_id, u.input_tokens, u.output_tokens, u.estimated_cost)
                for u in self._usage.values()
            ),
            converged_at_round=self._converged_at_round,
            rounds_run=self._rounds_run,
            interrupted=self._quit,
            total_duration_sec=time.monotonic() - start,
        )

    async def _debate(self, briefing: str) -> None:
        if not self._reviewers:
            logger.info("No reviewers configured, skipping debate")
            return

        max_rounds = self._options.max_rounds
        for round_num in range(1, max_rounds + 1):
            state = RoundState(number=round_num)
            self._rounds_run = round_num
            logger.info("Starting round %d/%d with %d reviewers", round_num, max_rounds, len(self._reviewers))

            for reviewer in self._reviewers:
                messages = build_turn_messages(
                    briefing,
                    self._transcript,
                    reviewer.id,
                    debate_instruction(reviewer.id, round_num, max_rounds),
                )
                state.reviewer_turns.append(
                    await self._take_turn(reviewer, Role.REVIEWER, Phase.DEBATE, messages, round_num)
                )
                await self._pause(Phase.DEBATE, round_num)
                if self._quit:
                    break

            if not self._quit and self._should_check_convergence(state):
                state.converged = await self._check_convergence(state)
                if state.converged and self._converged_at_round is None:
                    self._converged_at_round = round_num

            logger.info("Round %d complete: %d reviewer turns", round_num, len(state.reviewer_turns))
            if self._on_round_complete:
                self._on_round_complete(round_num, state.converged)

            if state.converged:
                logger.info("Reviewers converged at round %d, stopping debate", round_num)
                break
            if self._quit:
                logger.info("Operator ended the debate during round %d", round_num)
                break

    def _should_check_convergence(self, state: RoundState) -> bool:
        # Agreement needs at least two voices in the round
        return self._options.check_convergence and len(state.reviewer_turns) >= 2

    async def _check_convergence(self, state: RoundState) -> bool:
        if self._on_waiting:
            self._on_waiting(CONVERGENCE_CHECK_ID)
        converged = await self._judge(state.number, list(state.reviewer_turns))
        logger.info("Convergence check round %d: %s", state.number, "converged" if converged else "continue")
        return converged

    async def _summarize(self, briefing: str) -> list[ReviewerSummary]:
        summaries: list[ReviewerSummary] = []
        for reviewer in self._reviewers:
            messages = build_turn_messages(
                briefing, self._transcript, reviewer.id, summary_instruction(reviewer.id),
            )
            turn = await self._take_turn(reviewer, Role.REVIEWER, Phase.SUMMARY, messages)
            summaries.append(ReviewerSummary(reviewer_id=reviewer.id, summary=turn.content))
            await self._pause(Phase.SUMMARY, None)
        return summaries

    async def _take_turn(
        self,
        participant: Participant,
        role: Role,
        phase: Phase,
        messages: list[Message],
        round_number: int | None = None,
    ) -> Turn:
        """Stream one participant's reply to completion and record it."""
        if self._on_waiting:
            self._on_waiting(participant.id)

        fragments: list[str] = []
        try:
            async for fragment in participant.backend.chat_stream(messages, participant.system_prompt):
                fragments.append(fragment)
                if self._on_message:
                    self._on_message(participant.id, fragment)
        except Exception as exc:
            raise TurnError(participant.id, phase, str(exc)) from exc

        content = "".join(fragments)
        if not content.strip():
            raise TurnError(participant.id, phase, "empty response")

        turn = Turn(
            participant_id=participant.id,
            role=role,
            phase=phase,
            content=content,
            round=round_number,
        )
        self._transcript.append(turn)
        self._record_usage(participant, messages, content)
        return turn

    def _record_usage(self, participant: Participant, messages: list[Message], content: str) -> None:
        input_tokens = estimate_input_tokens(messages, participant.system_prompt)
        output_tokens = estimate_tokens(content)
        record = self._usage.setdefault(participant.id, UsageRecord(participant.id))
        record.input_tokens += input_tokens
        record.output_tokens += output_tokens
        record.estimated_cost += estimate_cost(participant.backend.model_string(), input_tokens, output_tokens)

    async def _pause(self, phase: Phase, round_number: int | None) -> None:
        """Wait for the operator between turns; no-op outside interactive mode."""
        if not self._options.interactive or self._quit or self._on_interactive is None:
            return

        action, text = parse_operator_input(await self._on_interactive())
        if action is OperatorAction.QUIT:
            self._quit = True
        elif action is OperatorAction.INTERJECT:
            logger.debug("Operator interjection (%d chars)", len(text))
            self._transcript.append(
                Turn(
                    participant_id=OPERATOR_ID,
                    role=Role.OPERATOR,
                    phase=phase,
                    content=text,
                    round=round_number,
                )
            )
