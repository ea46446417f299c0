"""Session engine for the adaptive arithmetic drill.

The :class:`SessionStateMachine` has two phases:

* ``idle``: the start prompt is showing and problems come at the default
  difficulty.  Answers are checked and get feedback but are not recorded,
  and the learner asks for the next problem by hand.
* ``active``: a timed session is running.  Every answer lands in the trace,
  the next problem follows after a short feedback pause, and the difficulty
  factor grows by 30% every twentieth question.

All state changes go through the machine's methods, and each one ends with a
full snapshot write through :class:`~arith_trainer.persistence.SessionPersistence`.
Timing is driven by a :class:`~arith_trainer.timers.Scheduler` that the host
loop pumps, so the machine itself never blocks.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal
from enum import Enum

from .config import SessionRules
from .narration import UNAVAILABLE_NOTICE, NullSpeaker, Speaker
from .persistence import SessionPersistence, SessionSnapshot
from .problems import Operator, Problem, ProblemGenerator, evaluate, spoken_problem
from .timers import ScheduledTask, Scheduler, TimerService
from .trace import TraceEntry, TraceRecorder, TraceSummary

logger = logging.getLogger(__name__)

CORRECT_FEEDBACK = "Correct!"

# Wide enough to hold any finite float to the cent.
_CENTS = Context(prec=400, rounding=ROUND_HALF_UP)


class SessionPhase(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


@dataclass(frozen=True, slots=True)
class AnswerResult:
    is_correct: bool
    correct_answer: int | float
    feedback: str


@dataclass(frozen=True, slots=True)
class SessionView:
    """View model for the UI (pure data)."""

    phase: SessionPhase
    problem: Problem
    questions_answered: int
    difficulty: float
    session_elapsed_s: int
    question_elapsed_s: int
    feedback: str
    answer_input: str
    show_start_prompt: bool
    narration_enabled: bool
    narration_notice: str | None
    awaiting_advance: bool
    trace: tuple[TraceEntry, ...]
    summary: TraceSummary

    @property
    def question_number(self) -> int:
        return self.questions_answered + 1


def parse_answer(raw: str) -> float | None:
    """Parse typed input as a number; ``None`` if it is not one."""
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def round_cents(value: float) -> float:
    """Round to two decimals, taking halves away from zero (``0.125`` -> ``0.13``)."""
    return float(Decimal(value).quantize(Decimal("0.01"), context=_CENTS))


def grade_answer(problem: Problem, raw: str) -> tuple[bool, int | float]:
    """Return ``(is_correct, correct_answer)`` for ``raw``.

    Division answers are compared after rounding both sides to two decimals
    with halves away from zero; other operators compare exactly.
    """
    correct = evaluate(problem.op, problem.a, problem.b)
    user = parse_answer(raw)
    if problem.op is Operator.DIV:
        correct = round_cents(correct)
        if user is not None:
            user = round_cents(user)
    if isinstance(correct, float) and correct.is_integer():
        correct = int(correct)
    return (user is not None and user == correct), correct


def incorrect_feedback(correct_answer: int | float) -> str:
    return f"Incorrect. The answer is {correct_answer}"


class SessionStateMachine:
    def __init__(
        self,
        *,
        scheduler: Scheduler,
        persistence: SessionPersistence,
        speaker: Speaker | None = None,
        generator: ProblemGenerator | None = None,
        rules: SessionRules | None = None,
    ) -> None:
        self._rules = rules if rules is not None else SessionRules()
        self._scheduler = scheduler
        self._persistence = persistence
        self._speaker: Speaker = speaker if speaker is not None else NullSpeaker()
        self._generator = (
            generator
            if generator is not None
            else ProblemGenerator(base_operand_max=self._rules.base_operand_max)
        )
        self._timers = TimerService(
            scheduler,
            interval_s=self._rules.tick_interval_s,
            on_change=self._persist,
        )
        self._trace = TraceRecorder()
        self._pending_advance: ScheduledTask | None = None

        self._active = False
        self._questions_answered = 0
        self._difficulty = 1.0
        self._show_start_prompt = True
        self._narration_enabled = False
        self._feedback = ""
        self._answer_input = ""
        self._current = self._generator.generate()

        self._restore()

    # -- Queries ------------------------------------------------------------
    @property
    def phase(self) -> SessionPhase:
        return SessionPhase.ACTIVE if self._active else SessionPhase.IDLE

    @property
    def active(self) -> bool:
        return self._active

    @property
    def current_problem(self) -> Problem:
        return self._current

    @property
    def questions_answered(self) -> int:
        return self._questions_answered

    @property
    def difficulty(self) -> float:
        return self._difficulty

    @property
    def session_elapsed_s(self) -> int:
        return self._timers.session_elapsed_s

    @property
    def question_elapsed_s(self) -> int:
        return self._timers.question_elapsed_s

    @property
    def feedback(self) -> str:
        return self._feedback

    @property
    def answer_input(self) -> str:
        return self._answer_input

    @property
    def show_start_prompt(self) -> bool:
        return self._show_start_prompt

    @property
    def narration_enabled(self) -> bool:
        return self._narration_enabled

    @property
    def narration_available(self) -> bool:
        return self._speaker.available

    @property
    def awaiting_advance(self) -> bool:
        return self._pending_advance is not None and not self._pending_advance.cancelled

    @property
    def timers_running(self) -> bool:
        return self._timers.running

    def trace_entries(self) -> list[TraceEntry]:
        """Chronological trace."""
        return self._trace.entries()

    def display_trace(self) -> list[TraceEntry]:
        return self._trace.display_order()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            current_problem=self._current,
            trace=tuple(self._trace.entries()),
            active=self._active,
            questions_answered=self._questions_answered,
            difficulty=self._difficulty,
            show_start_prompt=self._show_start_prompt,
            session_elapsed_s=self._timers.session_elapsed_s,
            narration_enabled=self._narration_enabled,
        )

    def view(self) -> SessionView:
        return SessionView(
            phase=self.phase,
            problem=self._current,
            questions_answered=self._questions_answered,
            difficulty=self._difficulty,
            session_elapsed_s=self._timers.session_elapsed_s,
            question_elapsed_s=self._timers.question_elapsed_s,
            feedback=self._feedback,
            answer_input=self._answer_input,
            show_start_prompt=self._show_start_prompt,
            narration_enabled=self._narration_enabled,
            narration_notice=None if self._speaker.available else UNAVAILABLE_NOTICE,
            awaiting_advance=self.awaiting_advance,
            trace=tuple(self._trace.display_order()),
            summary=self._trace.summary(),
        )

    # -- Actions ------------------------------------------------------------
    def start(self) -> None:
        """Begin a fresh session, discarding any previous one."""
        self._cancel_pending_advance()
        self._active = True
        self._questions_answered = 0
        self._difficulty = 1.0
        self._trace.clear()
        self._show_start_prompt = False
        self._narration_enabled = False
        self._feedback = ""
        self._answer_input = ""
        self._current = self._generator.generate(1.0)
        self._timers.start(session_elapsed_s=0)
        self._persist()
        logger.info("session started")

    def edit_answer(self, text: str) -> None:
        self._answer_input = str(text)

    def submit_answer(self, raw: str) -> AnswerResult | None:
        """Check ``raw`` against the current problem.

        Returns ``None`` without doing anything while the previous answer's
        feedback pause is still running.
        """
        if self.awaiting_advance:
            logger.debug("answer ignored while waiting for the next problem")
            return None

        problem = self._current
        is_correct, correct = grade_answer(problem, raw)
        self._feedback = CORRECT_FEEDBACK if is_correct else incorrect_feedback(correct)
        result = AnswerResult(is_correct=is_correct, correct_answer=correct, feedback=self._feedback)

        if not self._active:
            return result

        self._trace.append(
            TraceEntry.from_answer(
                problem=problem,
                user_answer=raw,
                correct_answer=correct,
                is_correct=is_correct,
                elapsed_s=self._timers.question_elapsed_s,
            )
        )
        self._persist()
        self._pending_advance = self._scheduler.call_later(
            self._rules.feedback_delay_s,
            self._advance_after_feedback,
        )
        logger.debug("answered %s with %r (%s)", problem.text, raw, "correct" if is_correct else "incorrect")
        return result

    def next_problem(self) -> bool:
        """Deal a new placeholder problem while idle.

        Active sessions advance on their own after each answer, so this
        returns ``False`` and changes nothing there.
        """
        if self._active:
            return False
        self._deal(self._generator.generate())
        self._persist()
        return True

    def set_narration_enabled(self, enabled: bool) -> None:
        enabled = bool(enabled)
        if enabled == self._narration_enabled:
            return
        self._narration_enabled = enabled
        if enabled:
            self._speak_current()
        self._persist()

    def close(self) -> None:
        """Stop every scheduled callback and write a final snapshot."""
        self._cancel_pending_advance()
        self._timers.stop()
        self._persist()

    # -- Internals ----------------------------------------------------------
    def _advance_after_feedback(self) -> None:
        self._pending_advance = None
        self._advance()

    def _advance(self) -> None:
        self._questions_answered += 1
        if self._questions_answered % self._rules.questions_per_level == 0:
            raised = round(self._difficulty * self._rules.difficulty_growth, 2)
            if math.isfinite(raised * self._rules.base_operand_max):
                self._difficulty = raised
                logger.info(
                    "difficulty raised to %.2f after %d questions",
                    self._difficulty,
                    self._questions_answered,
                )
            else:
                logger.warning("difficulty held at %g; operand range is at its limit", self._difficulty)
        self._deal(self._generator.generate(self._difficulty))
        self._persist()

    def _deal(self, problem: Problem) -> None:
        self._current = problem
        self._feedback = ""
        self._answer_input = ""
        self._timers.reset_question()
        if self._narration_enabled:
            self._speak_current()

    def _speak_current(self) -> None:
        if self._speaker.available:
            self._speaker.speak(spoken_problem(self._current))

    def _cancel_pending_advance(self) -> None:
        task = self._pending_advance
        self._pending_advance = None
        if task is not None:
            task.cancel()

    def _restore(self) -> None:
        snap = self._persistence.load(fallback_problem=self._current)
        if snap is None:
            logger.debug("no saved session, starting idle")
        else:
            self._current = snap.current_problem
            self._trace = TraceRecorder(snap.trace)
            self._active = snap.active
            self._questions_answered = snap.questions_answered
            self._difficulty = snap.difficulty
            self._show_start_prompt = snap.show_start_prompt
            self._narration_enabled = snap.narration_enabled
            if snap.active:
                self._timers.start(session_elapsed_s=snap.session_elapsed_s)
            else:
                self._timers.session_elapsed_s = snap.session_elapsed_s
            logger.info(
                "restored %s session at question %d",
                self.phase.value,
                self._questions_answered + 1,
            )
            if snap.active and len(self._trace) > self._questions_answered:
                # Shut down during the feedback pause: the answer is already
                # in the trace, so move past its problem now.
                logger.info("finishing the advance interrupted by the last shutdown")
                self._advance()
            elif self._narration_enabled:
                self._speak_current()
        self._persist()

    def _persist(self) -> None:
        self._persistence.save(self.snapshot())
