"""Durable storage of the drill session.

The whole session lives in one JSON document stored under a fixed key in a
small SQLite key-value table.  Persistence is best-effort: a missing,
unreadable or corrupted store loads as "no prior session", and failed writes
are logged and dropped so the drill carries on in memory.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .problems import Problem, operand_max
from .trace import TraceEntry

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SESSION_KEY = "math_practice_session"


class SlotStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def put(self, key: str, value: str) -> None: ...


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS slot (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteSlotStore:
    """Key-value slots in a SQLite file.  Each call opens its own connection."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        conn = open_db(self._path)
        try:
            row = conn.execute("SELECT value FROM slot WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return None if row is None else str(row[0])

    def put(self, key: str, value: str) -> None:
        conn = open_db(self._path)
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO slot(key, value, updated_at_utc) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at_utc = excluded.updated_at_utc
                    """,
                    (key, value, _utc_now_iso()),
                )
        finally:
            conn.close()


class MemorySlotStore:
    """In-process slots; used when no durable store is wanted."""

    def __init__(self) -> None:
        self._slots: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._slots.get(key)

    def put(self, key: str, value: str) -> None:
        self._slots[key] = value


def _count(value: object, name: str) -> int:
    try:
        return max(0, int(value or 0))  # type: ignore[call-overload]
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValueError(f"{name} is not a count: {value!r}") from exc


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Everything needed to resume a drill session after a restart."""

    current_problem: Problem
    trace: tuple[TraceEntry, ...] = ()
    active: bool = False
    questions_answered: int = 0
    difficulty: float = 1.0
    show_start_prompt: bool = True
    session_elapsed_s: int = 0
    narration_enabled: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "trace": [entry.to_dict() for entry in self.trace],
            "sessionActive": self.active,
            "questionsAnswered": self.questions_answered,
            "difficulty": self.difficulty,
            "showStart": self.show_start_prompt,
            "sessionTimer": self.session_elapsed_s,
            "problem": self.current_problem.to_dict(),
            "speechMode": self.narration_enabled,
        }

    @classmethod
    def from_dict(cls, data: object, *, fallback_problem: Problem) -> "SessionSnapshot":
        """Rebuild a snapshot; fields that are missing or falsy take defaults.

        Raises ``ValueError`` when the document is not an object or a present
        field cannot be decoded.
        """
        if not isinstance(data, dict):
            raise ValueError("session snapshot must be an object")

        raw_trace = data.get("trace") or []
        if not isinstance(raw_trace, list):
            raise ValueError("trace must be a list")
        trace = tuple(TraceEntry.from_dict(item) for item in raw_trace)

        raw_problem = data.get("problem")
        problem = fallback_problem if not raw_problem else Problem.from_dict(raw_problem)

        difficulty = float(data.get("difficulty") or 1.0)
        if not difficulty > 0:
            raise ValueError(f"difficulty must be > 0, got {difficulty}")
        # Rejects a factor whose operand range would not be a finite number.
        operand_max(difficulty)

        show_start = data.get("showStart")
        return cls(
            current_problem=problem,
            trace=trace,
            active=bool(data.get("sessionActive") or False),
            questions_answered=_count(data.get("questionsAnswered"), "questionsAnswered"),
            difficulty=difficulty,
            show_start_prompt=True if show_start is None else bool(show_start),
            session_elapsed_s=_count(data.get("sessionTimer"), "sessionTimer"),
            narration_enabled=bool(data.get("speechMode") or False),
        )


@dataclass(slots=True)
class SessionPersistence:
    """Reads and writes the session snapshot under :data:`SESSION_KEY`."""

    store: SlotStore
    key: str = SESSION_KEY
    last_error: str | None = field(default=None, init=False)

    def load(self, *, fallback_problem: Problem) -> SessionSnapshot | None:
        try:
            raw = self.store.get(self.key)
        except (OSError, sqlite3.Error) as exc:
            self._failed("load", exc)
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return SessionSnapshot.from_dict(data, fallback_problem=fallback_problem)
        except (ValueError, TypeError, OverflowError) as exc:
            self._failed("decode", exc)
            return None

    def save(self, snapshot: SessionSnapshot) -> None:
        try:
            self.store.put(self.key, json.dumps(snapshot.to_dict(), ensure_ascii=False))
        except (OSError, sqlite3.Error, TypeError, ValueError) as exc:
            self._failed("save", exc)
            return
        self.last_error = None

    def _failed(self, what: str, exc: Exception) -> None:
        # Saves run on every timer tick; only the first failure in a row warns.
        if self.last_error is None:
            logger.warning("session %s failed, continuing without it: %s", what, exc)
        else:
            logger.debug("session %s failed again: %s", what, exc)
        self.last_error = f"{what}: {exc}"
