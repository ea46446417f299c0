"""Pygame UI shell for the arithmetic drill trainer.

All session logic (problems, timing, difficulty, trace, persistence) lives in
``arith_trainer.session`` and friends; this module only renders a
:class:`~arith_trainer.session.SessionView` and turns key presses into
session actions.  The frame loop pumps the scheduler so timer ticks and the
post-answer pause fire on the UI thread.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

import pygame

from .config import TrainerConfig, configure_logging
from .narration import OfflineSpeaker, Speaker
from .persistence import SessionPersistence, SqliteSlotStore
from .problems import Operator, ProblemGenerator
from .session import CORRECT_FEEDBACK, SessionPhase, SessionStateMachine, SessionView
from .timers import RealClock, Scheduler, format_elapsed
from .trace import TraceEntry

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (10, 10, 14)
PANEL_BG = (22, 24, 34)
TEXT_MAIN = (235, 235, 245)
TEXT_MUTED = (140, 140, 150)
GOOD = (140, 220, 150)
BAD = (230, 140, 140)
WARN_BG = (90, 30, 30)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


class DrillScreen:
    """Single screen: problem on the left, trace on the right.

    Keys: digits, ``.`` and ``-`` edit the answer, Enter submits, F2 starts a
    session, F3 deals the next problem while idle, F4 toggles narration and
    Esc quits.
    """

    def __init__(self, app: App, session: SessionStateMachine) -> None:
        self._app = app
        self._session = session
        self._title_font = app.font
        self._problem_font = pygame.font.Font(None, 96)
        self._small_font = pygame.font.Font(None, 26)
        self._tiny_font = pygame.font.Font(None, 20)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        session = self._session
        key = event.key

        if key == pygame.K_ESCAPE:
            self._app.quit()
        elif key == pygame.K_F2:
            session.start()
        elif key == pygame.K_F3:
            session.next_problem()
        elif key == pygame.K_F4:
            session.set_narration_enabled(not session.narration_enabled)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            # Empty answers are never submitted.
            if session.answer_input.strip() != "":
                session.submit_answer(session.answer_input)
        elif key == pygame.K_BACKSPACE:
            session.edit_answer(session.answer_input[:-1])
        else:
            ch = getattr(event, "unicode", "") or ""
            session.edit_answer(_append_answer_char(session.answer_input, ch, session.current_problem.op))

    def render(self, surface: pygame.Surface) -> None:
        view = self._session.view()
        w, h = surface.get_size()
        surface.fill(BG)

        trace_w = min(340, w // 3)
        left_w = w - trace_w - 30
        y = 20

        if view.narration_notice is not None:
            notice = self._small_font.render(view.narration_notice, True, TEXT_MAIN)
            band = pygame.Rect(20, y, left_w - 20, notice.get_height() + 12)
            pygame.draw.rect(surface, WARN_BG, band)
            surface.blit(notice, (band.x + 8, band.y + 6))
            y = band.bottom + 12

        surface.blit(self._title_font.render("Math Practice", True, TEXT_MAIN), (20, y))
        y += 48

        speech = "on" if view.narration_enabled else "off"
        surface.blit(self._small_font.render(f"Speech mode: {speech} (F4)", True, TEXT_MUTED), (20, y))
        y += 30

        if view.phase is SessionPhase.ACTIVE:
            timers = (
                f"Session {format_elapsed(view.session_elapsed_s)}   "
                f"Question {view.question_elapsed_s}s"
            )
            status = f"Question {view.question_number} | Difficulty: {view.difficulty:g}x"
            surface.blit(self._small_font.render(timers, True, TEXT_MAIN), (20, y))
            surface.blit(self._small_font.render(status, True, TEXT_MAIN), (20, y + 28))
            y += 60
        if view.show_start_prompt:
            surface.blit(self._small_font.render("Press F2 to start a session", True, GOOD), (20, y))
            y += 32

        if not view.narration_enabled:
            problem = self._problem_font.render(view.problem.text, True, TEXT_MAIN)
            surface.blit(problem, (40, y + 10))
        y += 110

        answer = self._title_font.render(f"> {view.answer_input}_", True, TEXT_MAIN)
        surface.blit(answer, (40, y))
        y += 50

        if view.feedback:
            color = GOOD if view.feedback == CORRECT_FEEDBACK else BAD
            surface.blit(self._small_font.render(view.feedback, True, color), (40, y))
            y += 32
        if view.phase is SessionPhase.IDLE:
            surface.blit(self._small_font.render("F3: next problem", True, TEXT_MUTED), (40, y))

        hint = "Enter: check  |  F2: new session  |  Esc: quit"
        surface.blit(self._tiny_font.render(hint, True, TEXT_MUTED), (20, h - 30))

        self._render_trace(surface, view, pygame.Rect(w - trace_w - 10, 10, trace_w, h - 20))

    def _render_trace(self, surface: pygame.Surface, view: SessionView, rect: pygame.Rect) -> None:
        pygame.draw.rect(surface, PANEL_BG, rect)
        x = rect.x + 12
        y = rect.y + 10
        surface.blit(self._small_font.render("Question Trace", True, TEXT_MAIN), (x, y))
        y += 30
        s = view.summary
        if s.attempted:
            acc_pct = int(round(s.accuracy * 100))
            line = f"{s.correct}/{s.attempted} correct ({acc_pct}%)"
            surface.blit(self._tiny_font.render(line, True, TEXT_MUTED), (x, y))
            y += 22
        if not view.trace:
            surface.blit(self._tiny_font.render("No questions yet.", True, TEXT_MUTED), (x, y))
            return
        for entry in view.trace:
            if y > rect.bottom - 40:
                break
            surface.blit(self._tiny_font.render(_trace_line(entry), True, GOOD if entry.is_correct else BAD), (x, y))
            y += 20
            detail = f"{entry.operator_name}  |  {entry.elapsed_s}s"
            surface.blit(self._tiny_font.render(detail, True, TEXT_MUTED), (x + 10, y))
            y += 24


def _trace_line(entry: TraceEntry) -> str:
    mark = "ok" if entry.is_correct else "x"
    return f"{entry.question_text} = {entry.user_answer} [{mark}]"


def _append_answer_char(current: str, ch: str, op: Operator) -> str:
    if ch.isdigit():
        return current + ch
    if ch == "-" and current == "":
        return ch
    if ch == "." and op is Operator.DIV and "." not in current:
        return current + ch
    return current


def build_session(
    config: TrainerConfig,
    *,
    scheduler: Scheduler,
    speaker: Speaker | None = None,
) -> SessionStateMachine:
    if speaker is None:
        speaker = OfflineSpeaker(disabled=config.tts_disabled, backend=config.tts_backend)
    return SessionStateMachine(
        scheduler=scheduler,
        persistence=SessionPersistence(SqliteSlotStore(config.db_path)),
        speaker=speaker,
        generator=ProblemGenerator(seed=config.seed, base_operand_max=config.rules.base_operand_max),
        rules=config.rules,
    )


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    config: TrainerConfig | None = None,
) -> int:
    if config is None:
        config = TrainerConfig.from_env()
    configure_logging(config.log_level)

    pygame.init()
    pygame.display.set_caption("Math Practice")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)
    font = pygame.font.Font(None, 44)
    clock = pygame.time.Clock()

    app = App(surface=surface, font=font)
    scheduler = Scheduler(RealClock())
    speaker = OfflineSpeaker(disabled=config.tts_disabled, backend=config.tts_backend)
    session = build_session(config, scheduler=scheduler, speaker=speaker)
    logger.info("session store: %s", config.db_path)
    app.push(DrillScreen(app, session))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            scheduler.run_due()
            speaker.update()
            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        session.close()
        speaker.stop()
        pygame.quit()

    return 0
