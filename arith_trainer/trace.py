from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .problems import Operator, Problem


def _as_number(value: float) -> int | float:
    """Collapse integral floats so ``5.0`` is stored and shown as ``5``."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


@dataclass(frozen=True, slots=True)
class TraceEntry:
    """One answered problem, as recorded during an active session."""

    question_text: str
    operator_name: str
    a: int
    b: int
    operator: Operator
    user_answer: str
    correct_answer: int | float
    is_correct: bool
    elapsed_s: int

    @classmethod
    def from_answer(
        cls,
        *,
        problem: Problem,
        user_answer: str,
        correct_answer: float,
        is_correct: bool,
        elapsed_s: int,
    ) -> "TraceEntry":
        return cls(
            question_text=problem.text,
            operator_name=problem.op.display_name,
            a=problem.a,
            b=problem.b,
            operator=problem.op,
            user_answer=str(user_answer),
            correct_answer=_as_number(correct_answer),
            is_correct=bool(is_correct),
            elapsed_s=max(0, int(elapsed_s)),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "question": self.question_text,
            "operation": self.operator_name,
            "a": self.a,
            "b": self.b,
            "operator": self.operator.value,
            "userAnswer": self.user_answer,
            "correct": self.correct_answer,
            "isCorrect": self.is_correct,
            "time": self.elapsed_s,
        }

    @classmethod
    def from_dict(cls, data: object) -> "TraceEntry":
        if not isinstance(data, dict):
            raise ValueError("trace entry must be an object")
        try:
            op = Operator.from_symbol(str(data["operator"]))
            a = int(data["a"])
            b = int(data["b"])
            correct = data["correct"]
            if isinstance(correct, bool) or not isinstance(correct, (int, float)):
                raise ValueError(f"correct answer is not a number: {correct!r}")
            return cls(
                question_text=str(data.get("question") or f"{a} {op.value} {b}"),
                operator_name=str(data.get("operation") or op.display_name),
                a=a,
                b=b,
                operator=op,
                user_answer=str(data.get("userAnswer", "")),
                correct_answer=_as_number(correct),
                is_correct=bool(data.get("isCorrect", False)),
                elapsed_s=max(0, int(data.get("time", 0))),
            )
        except (KeyError, TypeError, OverflowError) as exc:
            raise ValueError(f"malformed trace entry: {data!r}") from exc


@dataclass(frozen=True, slots=True)
class TraceSummary:
    attempted: int
    correct: int
    accuracy: float
    mean_elapsed_s: float | None
    median_elapsed_s: float | None


def display_order(entries: Iterable[TraceEntry]) -> list[TraceEntry]:
    """Mistakes first, slowest first within each group.

    ``sorted`` is stable, so entries with equal times keep their
    chronological order.
    """
    return sorted(entries, key=lambda e: (e.is_correct, -e.elapsed_s))


class TraceRecorder:
    """Append-only log of answered problems for the current session.

    The chronological list is the source of truth and is what gets
    persisted; :meth:`display_order` is recomputed on every read.
    """

    def __init__(self, entries: Iterable[TraceEntry] = ()) -> None:
        self._entries: list[TraceEntry] = list(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: TraceEntry) -> None:
        self._entries.append(entry)

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> list[TraceEntry]:
        return list(self._entries)

    def display_order(self) -> list[TraceEntry]:
        return display_order(self._entries)

    def summary(self) -> TraceSummary:
        attempted = len(self._entries)
        correct = sum(1 for e in self._entries if e.is_correct)
        accuracy = 0.0 if attempted == 0 else correct / attempted

        times = sorted(e.elapsed_s for e in self._entries)
        mean_s: float | None
        median_s: float | None
        if not times:
            mean_s = None
            median_s = None
        else:
            mean_s = float(sum(times)) / float(len(times))
            mid = len(times) // 2
            if len(times) % 2 == 1:
                median_s = float(times[mid])
            else:
                median_s = float(times[mid - 1] + times[mid]) / 2.0

        return TraceSummary(
            attempted=attempted,
            correct=correct,
            accuracy=accuracy,
            mean_elapsed_s=mean_s,
            median_elapsed_s=median_s,
        )
