from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DB_PATH_ENV = "ARITH_TRAINER_DB_PATH"
DISABLE_TTS_ENV = "ARITH_TRAINER_DISABLE_TTS"
TTS_BACKEND_ENV = "ARITH_TRAINER_TTS_BACKEND"
LOG_LEVEL_ENV = "ARITH_TRAINER_LOG_LEVEL"
SEED_ENV = "ARITH_TRAINER_SEED"


@dataclass(frozen=True, slots=True)
class SessionRules:
    """Tuning constants of the drill session."""

    questions_per_level: int = 20
    difficulty_growth: float = 1.3
    base_operand_max: int = 20
    feedback_delay_s: float = 1.0
    tick_interval_s: float = 1.0

    def __post_init__(self) -> None:
        if self.questions_per_level < 1:
            raise ValueError("questions_per_level must be >= 1")
        if self.difficulty_growth < 1.0:
            raise ValueError("difficulty_growth must be >= 1.0")
        if self.base_operand_max < 1:
            raise ValueError("base_operand_max must be >= 1")
        if self.feedback_delay_s < 0:
            raise ValueError("feedback_delay_s must be >= 0")
        if self.tick_interval_s <= 0:
            raise ValueError("tick_interval_s must be > 0")


@dataclass(frozen=True, slots=True)
class TrainerConfig:
    db_path: Path
    tts_disabled: bool = False
    tts_backend: str | None = None
    log_level: str = "WARNING"
    seed: int | None = None
    rules: SessionRules = field(default_factory=SessionRules)

    @classmethod
    def default_db_path(cls) -> Path:
        return Path.home() / ".arith_trainer.sqlite3"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "TrainerConfig":
        env = os.environ if environ is None else environ

        explicit = env.get(DB_PATH_ENV, "").strip()
        db_path = Path(explicit).expanduser() if explicit else cls.default_db_path()

        backend = env.get(TTS_BACKEND_ENV, "").strip().lower() or None

        level = env.get(LOG_LEVEL_ENV, "WARNING").strip().upper() or "WARNING"
        if not isinstance(logging.getLevelName(level), int):
            logger.warning("unknown log level %r, using WARNING", level)
            level = "WARNING"

        seed: int | None = None
        raw_seed = env.get(SEED_ENV, "").strip()
        if raw_seed:
            try:
                seed = int(raw_seed)
            except ValueError:
                logger.warning("ignoring non-integer %s=%r", SEED_ENV, raw_seed)

        return cls(
            db_path=db_path,
            tts_disabled=env.get(DISABLE_TTS_ENV, "0").strip() == "1",
            tts_backend=backend,
            log_level=level,
            seed=seed,
        )


def configure_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
