"""Arithmetic problems and their generator.

A problem is two positive integer operands joined by one of the four
operators.  The generator scales the operand range with a difficulty factor:
at difficulty 1 operands are drawn from ``[1, 20]``, at difficulty 1.3 from
``[1, 26]`` and so on.  Division problems are built from a product so the
dividend is always a multiple of the divisor.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from enum import StrEnum

BASE_OPERAND_MAX = 20


class Operator(StrEnum):
    ADD = "+"
    SUB = "-"
    MUL = "×"
    DIV = "÷"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def spoken(self) -> str:
        return _SPOKEN_WORDS[self]

    @classmethod
    def from_symbol(cls, symbol: str) -> "Operator":
        """Resolve a stored symbol, accepting ASCII ``*`` and ``/`` too."""
        cleaned = str(symbol).strip()
        return cls(_ASCII_ALIASES.get(cleaned, cleaned))


_DISPLAY_NAMES = {
    Operator.ADD: "Addition",
    Operator.SUB: "Subtraction",
    Operator.MUL: "Multiplication",
    Operator.DIV: "Division",
}

_SPOKEN_WORDS = {
    Operator.ADD: "plus",
    Operator.SUB: "minus",
    Operator.MUL: "times",
    Operator.DIV: "divided by",
}

_ASCII_ALIASES = {"*": "×", "x": "×", "/": "÷"}


def evaluate(op: Operator, a: int, b: int) -> float:
    """Apply ``op`` to the operands.  Division is true division."""
    if op is Operator.ADD:
        return a + b
    if op is Operator.SUB:
        return a - b
    if op is Operator.MUL:
        return a * b
    return a / b


@dataclass(frozen=True, slots=True)
class Problem:
    a: int
    b: int
    op: Operator

    @property
    def text(self) -> str:
        return f"{self.a} {self.op.value} {self.b}"

    def to_dict(self) -> dict[str, object]:
        return {"a": self.a, "b": self.b, "op": {"symbol": self.op.value}}

    @classmethod
    def from_dict(cls, data: object) -> "Problem":
        """Rebuild a stored problem.  Raises ``ValueError`` on malformed data."""
        if not isinstance(data, dict):
            raise ValueError("problem must be an object")
        raw_op = data.get("op")
        symbol = raw_op.get("symbol") if isinstance(raw_op, dict) else raw_op
        try:
            a = int(data["a"])
            b = int(data["b"])
            op = Operator.from_symbol(str(symbol))
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"malformed problem: {data!r}") from exc
        if op is Operator.DIV and b == 0:
            raise ValueError("division problem with zero divisor")
        return cls(a=a, b=b, op=op)


def spoken_problem(problem: Problem) -> str:
    return f"What is {problem.a} {problem.op.spoken} {problem.b}?"


def operand_max(difficulty: float, *, base: int = BASE_OPERAND_MAX) -> int:
    """Upper bound (inclusive) of the operand range at ``difficulty``.

    Raises ``ValueError`` when the bound is not a finite number.
    """
    bound = base * difficulty
    if not math.isfinite(bound):
        raise ValueError(f"operand range at difficulty {difficulty} is not finite")
    return max(1, math.floor(bound))


class ProblemGenerator:
    """Draws problems from a ``random.Random`` stream.

    Passing the same seed reproduces the same sequence, which the tests and
    the ``ARITH_TRAINER_SEED`` setting rely on.
    """

    def __init__(
        self,
        seed: int | None = None,
        *,
        rng: random.Random | None = None,
        base_operand_max: int = BASE_OPERAND_MAX,
    ) -> None:
        if base_operand_max < 1:
            raise ValueError("base_operand_max must be >= 1")
        self.rng = rng if rng is not None else random.Random(seed)
        self.base_operand_max = int(base_operand_max)
        self.operators: list[Operator] = list(Operator)

    def generate(self, difficulty: float = 1.0) -> Problem:
        if not difficulty > 0:
            raise ValueError("difficulty must be > 0")
        hi = operand_max(difficulty, base=self.base_operand_max)
        op = self.rng.choice(self.operators)
        x = self.rng.randint(1, hi)
        y = self.rng.randint(1, hi)
        if op is Operator.DIV:
            return Problem(a=x * y, b=y, op=op)
        return Problem(a=x, b=y, op=op)
