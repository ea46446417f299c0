from __future__ import annotations

from pathlib import Path

import pytest

from arith_trainer.config import SessionRules, TrainerConfig


def test_defaults_from_empty_environment() -> None:
    cfg = TrainerConfig.from_env({})
    assert cfg.db_path == Path.home() / ".arith_trainer.sqlite3"
    assert cfg.tts_disabled is False
    assert cfg.tts_backend is None
    assert cfg.log_level == "WARNING"
    assert cfg.seed is None
    assert cfg.rules == SessionRules()


def test_values_from_environment(tmp_path: Path) -> None:
    cfg = TrainerConfig.from_env(
        {
            "ARITH_TRAINER_DB_PATH": str(tmp_path / "s.sqlite3"),
            "ARITH_TRAINER_DISABLE_TTS": "1",
            "ARITH_TRAINER_TTS_BACKEND": " ESpeak ",
            "ARITH_TRAINER_LOG_LEVEL": "debug",
            "ARITH_TRAINER_SEED": "42",
        }
    )
    assert cfg.db_path == tmp_path / "s.sqlite3"
    assert cfg.tts_disabled is True
    assert cfg.tts_backend == "espeak"
    assert cfg.log_level == "DEBUG"
    assert cfg.seed == 42


def test_bad_values_fall_back_to_defaults() -> None:
    cfg = TrainerConfig.from_env({"ARITH_TRAINER_LOG_LEVEL": "chatty", "ARITH_TRAINER_SEED": "abc"})
    assert cfg.log_level == "WARNING"
    assert cfg.seed is None


def test_rules_defaults() -> None:
    rules = SessionRules()
    assert rules.questions_per_level == 20
    assert rules.difficulty_growth == 1.3
    assert rules.base_operand_max == 20
    assert rules.feedback_delay_s == 1.0
    assert rules.tick_interval_s == 1.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"questions_per_level": 0},
        {"difficulty_growth": 0.9},
        {"base_operand_max": 0},
        {"feedback_delay_s": -0.1},
        {"tick_interval_s": 0.0},
    ],
)
def test_rules_reject_invalid_values(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        SessionRules(**kwargs)  # type: ignore[arg-type]
