"""Smoke test for the pygame UI.

Runs the main loop for a handful of frames on the SDL dummy drivers, drives
it with injected key presses and checks the session that ends up on disk.
It does not check rendering.
"""

from __future__ import annotations

import os
from pathlib import Path

# Use the dummy drivers before importing pygame or the application
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def test_app_runs_headless(tmp_path: Path) -> None:
    from arith_trainer.app import run
    from arith_trainer.config import TrainerConfig

    cfg = TrainerConfig(db_path=tmp_path / "smoke.sqlite3", tts_disabled=True)
    assert run(max_frames=3, config=cfg) == 0


def test_start_and_answer_through_the_keyboard(tmp_path: Path) -> None:
    import pygame

    from arith_trainer.app import run
    from arith_trainer.config import TrainerConfig
    from arith_trainer.persistence import SessionPersistence, SqliteSlotStore
    from arith_trainer.problems import Operator, Problem

    db_path = tmp_path / "smoke.sqlite3"
    cfg = TrainerConfig(db_path=db_path, tts_disabled=True, seed=11)

    def key(k: int, ch: str = "") -> None:
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": k, "unicode": ch, "mod": 0}))

    def inject(frame: int) -> None:
        if frame == 1:
            key(pygame.K_F2)
        elif frame == 2:
            key(pygame.K_4, "4")
        elif frame == 3:
            key(pygame.K_2, "2")
        elif frame == 4:
            key(pygame.K_RETURN)

    assert run(max_frames=10, event_injector=inject, config=cfg) == 0

    snap = SessionPersistence(SqliteSlotStore(db_path)).load(fallback_problem=Problem(1, 1, Operator.ADD))
    assert snap is not None
    assert snap.active is True
    assert snap.show_start_prompt is False
    [entry] = snap.trace
    assert entry.user_answer == "42"
