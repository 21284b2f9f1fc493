"""Pygame shell for the Visual Rhythm test.

Screens:
- Adaptive Test (Stage A staircases -> intermission -> Stage B)
- Custom Stage B (operator-chosen noise level and frequencies)
- Free Play (single trials with adjustable settings)

Deterministic staircase/queue/envelope/RNG/state lives in visual_rhythm/* (core modules).
"""

from __future__ import annotations

import logging
import os
import random
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np
import pygame

from .clock import RealClock
from .envelope import Envelope, preview_noise_curve
from .export import DEFAULT_EXPORT_STEM, write_trial_log
from .free_play import FreePlaySession
from .masking import compose_masked_frame, envelope_overlay_points
from .persistence import default_db_path, record_rhythm_session
from .refresh_rate import RefreshRateProbe, effective_refresh_rate, is_loop_limited
from .results import session_result_from_engine
from .rhythm_core import RhythmTestConfig, Stage, clamp, round_noise
from .rhythm_test import FrequencyResult, RhythmTestEngine, TrialStep
from .words import WORD_LENGTH

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"

WINDOW_SIZE = (960, 540)
STIMULUS_SIZE = (500, 200)
# Loop cap while vsync paces flip(); never reached by a synced display.
MAX_FPS = 500

EXPORT_DIR_ENV = "VISUAL_RHYTHM_EXPORT_DIR"
DEBUG_ENV = "VISUAL_RHYTHM_DEBUG"
LOG_LEVEL_ENV = "VISUAL_RHYTHM_LOG_LEVEL"

BG = (10, 10, 14)
PANEL_BG = (22, 26, 36)
TEXT_MAIN = (235, 235, 245)
TEXT_MUTED = (160, 166, 180)
ACCENT = (34, 211, 238)
GOOD = (74, 222, 128)
BAD = (248, 113, 113)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


def configure_logging() -> None:
    level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    root = logging.getLogger("visual_rhythm")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        root.addHandler(handler)
    root.setLevel(level)


def default_export_dir() -> Path:
    explicit = os.environ.get(EXPORT_DIR_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.cwd()


class App:
    def __init__(
        self,
        surface: pygame.Surface,
        font: pygame.font.Font,
        *,
        probe: RefreshRateProbe,
        db_path: Path,
        export_dir: Path,
        vsync: bool = False,
        debug: bool = False,
    ) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True
        self._probe = probe
        self._probe_logged = False
        self._vsync = vsync
        self.db_path = db_path
        self.export_dir = export_dir
        self.debug = debug

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def refresh_rate_hz(self) -> int:
        return effective_refresh_rate(self._probe.measured_fps, vsync=self._vsync, loop_cap_fps=MAX_FPS)

    @property
    def display_synced(self) -> bool:
        """Whether flip() is paced by the monitor, as far as the probe can tell."""

        if not self._vsync:
            return False
        measured = self._probe.measured_fps
        return measured is None or not is_loop_limited(measured, MAX_FPS)

    @property
    def loop_fps(self) -> int:
        # Unsynced, one loop pass must equal one envelope frame.
        return MAX_FPS if self.display_synced else self.refresh_rate_hz

    def frame_presented(self) -> None:
        self._probe.tick()
        if self._probe.done and not self._probe_logged:
            self._probe_logged = True
            measured = self._probe.measured_fps or 0.0
            if self.display_synced:
                logger.info("Display measured at %.0f fps, using %d Hz", measured, self.refresh_rate_hz)
            else:
                logger.warning(
                    "No vsync (loop ran at %.0f fps); pacing frames at %d Hz",
                    measured,
                    self.refresh_rate_hz,
                )

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

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


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._move(-1)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._move(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._activate()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._back()

    def _move(self, delta: int) -> None:
        if not self._items:
            return
        self._selected = (self._selected + delta) % len(self._items)

    def _activate(self) -> None:
        if not self._items:
            return
        self._items[self._selected].action()

    def _back(self) -> None:
        if self._is_root:
            self._app.quit()
        else:
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        surface.fill(BG)

        title = self._title_font.render(self._title, True, ACCENT)
        surface.blit(title, title.get_rect(center=(w // 2, max(50, h // 6))))

        row_h = 44
        total_h = row_h * len(self._items)
        y = max(h // 3, (h - total_h) // 2)
        for idx, item in enumerate(self._items):
            row = pygame.Rect(w // 2 - 200, y, 400, row_h - 6)
            selected = idx == self._selected
            pygame.draw.rect(surface, ACCENT if selected else PANEL_BG, row)
            color = BG if selected else TEXT_MAIN
            text = self._item_font.render(item.label, True, color)
            surface.blit(text, text.get_rect(center=row.center))
            y += row_h

        hint = f"Enter: Select  |  Esc: Back  |  Display: {self._app.refresh_rate_hz} Hz"
        foot = self._hint_font.render(hint, True, TEXT_MUTED)
        surface.blit(foot, foot.get_rect(midbottom=(w // 2, h - 12)))


class FrequencySelector:
    """Keyboard grid for picking a fixed number of frequencies."""

    columns = 6

    def __init__(self, *, min_hz: int, max_hz: int, limit: int) -> None:
        self._options = list(range(min_hz, max_hz + 1))
        self._limit = int(limit)
        self._cursor = 0
        self._selected: list[int] = []

    @property
    def selected(self) -> list[int]:
        return list(self._selected)

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def complete(self) -> bool:
        return len(self._selected) == self._limit

    def set_selected(self, frequencies: list[int]) -> None:
        valid = [f for f in frequencies if f in self._options]
        self._selected = sorted(valid[: self._limit])
        if self._selected:
            self._cursor = self._options.index(self._selected[0])

    def toggle(self, frequency_hz: int) -> None:
        if frequency_hz in self._selected:
            self._selected.remove(frequency_hz)
        elif len(self._selected) < self._limit:
            self._selected = sorted(self._selected + [frequency_hz])

    def handle_key(self, key: int) -> bool:
        n = len(self._options)
        if key == pygame.K_LEFT:
            self._cursor = (self._cursor - 1) % n
        elif key == pygame.K_RIGHT:
            self._cursor = (self._cursor + 1) % n
        elif key == pygame.K_UP:
            self._cursor = (self._cursor - self.columns) % n
        elif key == pygame.K_DOWN:
            self._cursor = (self._cursor + self.columns) % n
        elif key == pygame.K_SPACE:
            self.toggle(self._options[self._cursor])
        else:
            return False
        return True

    def render(self, surface: pygame.Surface, rect: pygame.Rect, font: pygame.font.Font) -> None:
        rows = (len(self._options) + self.columns - 1) // self.columns
        cell_w = rect.w // self.columns
        cell_h = max(22, rect.h // max(1, rows))
        for i, f in enumerate(self._options):
            r, c = divmod(i, self.columns)
            cell = pygame.Rect(rect.x + c * cell_w + 2, rect.y + r * cell_h + 2, cell_w - 4, cell_h - 4)
            is_selected = f in self._selected
            blocked = not is_selected and len(self._selected) >= self._limit
            fill = ACCENT if is_selected else (40, 44, 56) if blocked else (70, 76, 92)
            pygame.draw.rect(surface, fill, cell)
            if i == self._cursor:
                pygame.draw.rect(surface, TEXT_MAIN, cell, 2)
            color = BG if is_selected else TEXT_MUTED if blocked else TEXT_MAIN
            label = font.render(str(f), True, color)
            surface.blit(label, label.get_rect(center=cell.center))


def _render_word_luma(font: pygame.font.Font, word: str) -> np.ndarray:
    """White word on black, as a (width, height) uint8 array in surfarray order."""

    canvas = pygame.Surface(STIMULUS_SIZE)
    canvas.fill((0, 0, 0))
    text = font.render(word, True, (255, 255, 255), (0, 0, 0))
    canvas.blit(text, text.get_rect(center=(STIMULUS_SIZE[0] // 2, STIMULUS_SIZE[1] // 2)))
    return pygame.surfarray.array3d(canvas)[:, :, 0].copy()


def _draw_accuracy_bars(
    surface: pygame.Surface,
    rect: pygame.Rect,
    results: list[FrequencyResult],
    *,
    title: str,
    font: pygame.font.Font,
) -> None:
    pygame.draw.rect(surface, PANEL_BG, rect)
    caption = font.render(title, True, TEXT_MUTED)
    surface.blit(caption, (rect.x + 6, rect.y + 4))
    if not results:
        return
    plot = pygame.Rect(rect.x + 6, rect.y + 26, rect.w - 12, rect.h - 48)
    bar_w = max(4, plot.w // len(results))
    for i, r in enumerate(results):
        bar_h = int(round(plot.h * clamp(r.accuracy, 0.0, 1.0)))
        bar = pygame.Rect(plot.x + i * bar_w + 2, plot.bottom - bar_h, bar_w - 4, bar_h)
        pygame.draw.rect(surface, BAD if r.is_pinned else ACCENT, bar)
        label = font.render(f"{r.frequency_hz}", True, TEXT_MAIN)
        surface.blit(label, label.get_rect(midtop=(bar.centerx, plot.bottom + 2)))


class _StimulusPlayer:
    """Plays an envelope one frame per display refresh onto an off-screen surface."""

    def __init__(self, *, seed: int) -> None:
        self._surface = pygame.Surface(STIMULUS_SIZE)
        self._word_font = pygame.font.Font(None, 96)
        self._np_rng = np.random.default_rng(seed)
        self._source: object | None = None
        self._word_luma: np.ndarray | None = None
        self._envelope: Envelope | None = None
        self._frame = 0

    @property
    def surface(self) -> pygame.Surface:
        return self._surface

    def load(self, source: object, word: str, envelope: Envelope) -> None:
        if source is self._source:
            return
        self._source = source
        self._word_luma = _render_word_luma(self._word_font, word)
        self._envelope = envelope
        self._frame = 0

    def step(self) -> bool:
        """Draw the next frame. Returns False once every frame was shown."""

        if self._envelope is None or self._word_luma is None:
            return False
        if self._frame >= self._envelope.frame_count:
            self._surface.fill((0, 0, 0))
            return False
        density = self._envelope.values[self._frame]
        frame = compose_masked_frame(self._word_luma, density, self._np_rng)
        pygame.surfarray.blit_array(self._surface, frame)
        self._frame += 1
        return True

    def clear(self) -> None:
        self._surface.fill((0, 0, 0))


def _draw_debug_overlay(
    surface: pygame.Surface,
    stim_rect: pygame.Rect,
    envelope: Envelope,
    *,
    config: RhythmTestConfig,
    font: pygame.font.Font,
) -> None:
    w, h = 150, 50
    box = pygame.Rect(stim_rect.right - w - 10, stim_rect.y + 10, w, h)
    pygame.draw.rect(surface, (0, 0, 0), box)
    pygame.draw.rect(surface, (0, 255, 255), box, 1)
    points = envelope_overlay_points(
        envelope.values,
        x=box.x,
        y=box.y,
        width=box.w,
        height=box.h,
        noise_min=config.noise_min,
        noise_max=config.noise_max,
    )
    if len(points) >= 2:
        pygame.draw.lines(surface, (255, 255, 0), False, points, 1)
    lines = (
        f"Frames: {envelope.frame_count}",
        f"RMS: {envelope.rms:.3f}",
        f"Mean: {envelope.mean:.3f}",
    )
    for i, text in enumerate(lines):
        surface.blit(font.render(text, True, TEXT_MAIN), (box.x + 4, box.y + 2 + i * 14))


def _guess_char(event: pygame.event.Event) -> str:
    ch = str(getattr(event, "unicode", "") or "")
    return ch.upper() if len(ch) == 1 and ch.isalpha() else ""


class RhythmTestScreen:
    def __init__(
        self,
        app: App,
        *,
        engine_factory: Callable[[], RhythmTestEngine],
        custom: bool = False,
    ) -> None:
        self._app = app
        self._engine = engine_factory()
        self._custom = custom
        cfg = self._engine.config
        self._input = ""
        self._player = _StimulusPlayer(seed=self._engine.seed)
        self._selector = FrequencySelector(
            min_hz=cfg.min_frequency_hz,
            max_hz=cfg.max_frequency_hz,
            limit=cfg.stage_b_frequency_count,
        )
        self._selector_seeded = False
        self._custom_noise = cfg.initial_noise
        self._saved = False
        self._status: str | None = None
        self._show_debug = app.debug

        self._small_font = pygame.font.Font(None, 24)
        self._tiny_font = pygame.font.Font(None, 18)
        self._mid_font = pygame.font.Font(None, 40)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        engine = self._engine

        if event.key == pygame.K_F3:
            self._show_debug = not self._show_debug
            return
        if event.key == pygame.K_ESCAPE:
            # Mid-stage exit needs Shift+Esc and abandons the session.
            if engine.can_exit():
                self._app.pop()
            elif int(getattr(event, "mod", 0)) & pygame.KMOD_SHIFT:
                engine.reset()
                self._app.pop()
            return

        stage = engine.stage
        if stage is Stage.IDLE:
            self._handle_idle_key(event)
        elif stage in (Stage.STAGE_A, Stage.STAGE_B):
            self._handle_trial_key(event)
        elif stage is Stage.INTERMISSION:
            if self._selector.handle_key(event.key):
                return
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER) and self._selector.complete:
                engine.set_refresh_rate(self._app.refresh_rate_hz)
                engine.start_stage_b(self._selector.selected)
        elif stage is Stage.COMPLETE:
            self._handle_complete_key(event)

    def _handle_idle_key(self, event: pygame.event.Event) -> None:
        engine = self._engine
        if not self._custom:
            if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
                engine.set_refresh_rate(self._app.refresh_rate_hz)
                engine.start_stage_a()
            return

        cfg = engine.config
        if event.key in (pygame.K_EQUALS, pygame.K_PLUS, pygame.K_KP_PLUS):
            self._custom_noise = cfg.clamp_noise(round_noise(self._custom_noise + 0.01))
        elif event.key in (pygame.K_MINUS, pygame.K_KP_MINUS):
            self._custom_noise = cfg.clamp_noise(round_noise(self._custom_noise - 0.01))
        elif self._selector.handle_key(event.key):
            return
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER) and self._selector.complete:
            engine.set_refresh_rate(self._app.refresh_rate_hz)
            engine.start_custom_stage_b(self._custom_noise, self._selector.selected)

    def _handle_trial_key(self, event: pygame.event.Event) -> None:
        engine = self._engine
        if engine.step is not TrialStep.RESPONSE:
            return
        if event.key == pygame.K_BACKSPACE:
            self._input = self._input[:-1]
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            if engine.submit_guess(self._input):
                self._input = ""
        elif event.key == pygame.K_F1 or getattr(event, "unicode", "") == "?":
            if engine.submit_dont_know():
                self._input = ""
        else:
            ch = _guess_char(event)
            if ch and len(self._input) < WORD_LENGTH:
                self._input += ch

    def _handle_complete_key(self, event: pygame.event.Event) -> None:
        if event.key == pygame.K_c:
            self._export(".csv")
        elif event.key == pygame.K_j:
            self._export(".json")
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            self._saved = False
            self._selector_seeded = False
            self._status = None
            if self._custom:
                self._engine.reset()
            else:
                self._engine.set_refresh_rate(self._app.refresh_rate_hz)
                self._engine.start_stage_a()

    def _export(self, suffix: str) -> None:
        path = self._app.export_dir / f"{DEFAULT_EXPORT_STEM}_{self._engine.seed}{suffix}"
        try:
            write_trial_log(path, self._engine.events())
        except OSError as exc:
            logger.error("Export to %s failed: %s", path, exc)
            self._status = f"Export failed: {exc}"
            return
        logger.info("Exported trial log to %s", path)
        self._status = f"Saved {path.name}"

    def _save_results(self) -> None:
        self._saved = True
        result = session_result_from_engine(self._engine)
        try:
            record_rhythm_session(db_path=self._app.db_path, result=result, app_version=APP_VERSION)
        except (sqlite3.Error, OSError) as exc:
            logger.error("Could not save session to %s: %s", self._app.db_path, exc)
            self._status = "Results not saved (see log)"

    def render(self, surface: pygame.Surface) -> None:
        self._engine.update()
        snap = self._engine.snapshot()
        if snap.stage is Stage.COMPLETE and not self._saved:
            self._save_results()

        surface.fill(BG)
        w, h = surface.get_size()
        title = self._mid_font.render(snap.title, True, ACCENT)
        surface.blit(title, title.get_rect(midtop=(w // 2, 14)))

        if snap.stage is Stage.IDLE:
            self._render_idle(surface)
        elif snap.stage in (Stage.STAGE_A, Stage.STAGE_B):
            self._render_trial(surface)
        elif snap.stage is Stage.INTERMISSION:
            self._render_intermission(surface)
        else:
            self._render_complete(surface)

        if self._status:
            msg = self._tiny_font.render(self._status, True, TEXT_MUTED)
            surface.blit(msg, msg.get_rect(bottomright=(w - 10, h - 8)))

    def _render_idle(self, surface: pygame.Surface) -> None:
        w, h = surface.get_size()
        if not self._custom:
            lines = (
                "Find the rhythm where your visual processing is sharpest.",
                "A five-letter word flashes behind flickering noise. Type what you saw.",
                "Press ? or F1 if you could not read it.",
                "",
                "Press Enter to start Stage A.",
            )
            for i, text in enumerate(lines):
                label = self._small_font.render(text, True, TEXT_MAIN)
                surface.blit(label, label.get_rect(center=(w // 2, h // 3 + i * 30)))
            return

        header = (
            f"Custom Stage B  |  noise {self._custom_noise:.2f} (+/-)  |  "
            f"pick {self._selector.limit} frequencies (arrows + Space), Enter to start"
        )
        label = self._small_font.render(header, True, TEXT_MAIN)
        surface.blit(label, label.get_rect(midtop=(w // 2, 64)))
        self._selector.render(surface, pygame.Rect(w // 2 - 240, 100, 480, h - 160), self._small_font)

    def _render_trial(self, surface: pygame.Surface) -> None:
        engine = self._engine
        snap = engine.snapshot()
        w, h = surface.get_size()

        stage_label = "Stage A: finding your difficulty level" if snap.stage is Stage.STAGE_A else (
            "Stage B: measuring accuracy"
        )
        info = self._small_font.render(
            f"{stage_label}  |  Trial {snap.progress_current} / {snap.progress_total}",
            True,
            TEXT_MUTED,
        )
        surface.blit(info, info.get_rect(midtop=(w // 2, 56)))

        stim_rect = pygame.Rect(0, 0, *STIMULUS_SIZE)
        stim_rect.center = (w // 2, h // 2 - 30)

        trial = snap.trial
        if snap.step is TrialStep.PRESENT and trial is not None:
            self._player.load(trial, trial.word, trial.envelope)
            if not self._player.step():
                engine.mark_presented()
        else:
            self._player.clear()
        surface.blit(self._player.surface, stim_rect)
        pygame.draw.rect(surface, (75, 85, 99), stim_rect, 2)

        if self._show_debug and trial is not None:
            _draw_debug_overlay(surface, stim_rect, trial.envelope, config=engine.config, font=self._tiny_font)

        y = stim_rect.bottom + 20
        if snap.step is TrialStep.RESPONSE:
            box = pygame.Rect(w // 2 - 150, y, 300, 44)
            pygame.draw.rect(surface, PANEL_BG, box)
            pygame.draw.rect(surface, ACCENT, box, 2)
            text = self._mid_font.render(self._input, True, TEXT_MAIN)
            surface.blit(text, text.get_rect(center=box.center))
            hint = self._tiny_font.render("Type the word, Enter to submit, ? = I don't know", True, TEXT_MUTED)
            surface.blit(hint, hint.get_rect(midtop=(w // 2, box.bottom + 6)))
        elif snap.step is TrialStep.FEEDBACK and snap.feedback:
            color = GOOD if snap.feedback_correct else BAD
            text = self._mid_font.render(snap.feedback, True, color)
            surface.blit(text, text.get_rect(midtop=(w // 2, y)))

    def _render_intermission(self, surface: pygame.Surface) -> None:
        plan = self._engine.stage_b_plan
        if plan is not None and not self._selector_seeded:
            self._selector.set_selected(list(plan.suggested_frequencies))
            self._selector_seeded = True

        w, h = surface.get_size()
        noise = "n/a" if plan is None else f"{plan.noise_level:.3f}"
        header = self._small_font.render(
            f"Stage A complete. Stage B noise {noise}. "
            f"Select {self._selector.limit} frequencies ({len(self._selector.selected)}/{self._selector.limit}), Enter to start.",
            True,
            TEXT_MAIN,
        )
        surface.blit(header, header.get_rect(midtop=(w // 2, 56)))
        _draw_accuracy_bars(
            surface,
            pygame.Rect(20, 90, w // 2 - 30, h - 120),
            self._engine.stage_a_results(),
            title="Stage A: coarse tuning (red = pinned)",
            font=self._tiny_font,
        )
        self._selector.render(surface, pygame.Rect(w // 2 + 10, 90, w // 2 - 30, h - 120), self._small_font)

    def _render_complete(self, surface: pygame.Surface) -> None:
        engine = self._engine
        w, h = surface.get_size()
        peak = engine.peak_result()
        stats = engine.stage_stats()

        if peak is not None:
            text = f"Your peak performance was at {peak.frequency_hz} Hz with {peak.accuracy * 100:.0f}% accuracy."
            label = self._small_font.render(text, True, TEXT_MAIN)
            surface.blit(label, label.get_rect(midtop=(w // 2, 56)))

        a, b = stats[Stage.STAGE_A], stats[Stage.STAGE_B]
        summary = self._tiny_font.render(
            f"Stage A accuracy: {a.accuracy * 100:.1f}%   Stage B accuracy: {b.accuracy * 100:.1f}%",
            True,
            TEXT_MUTED,
        )
        surface.blit(summary, summary.get_rect(midtop=(w // 2, 84)))

        half = w // 2 - 30
        _draw_accuracy_bars(
            surface,
            pygame.Rect(20, 110, half, h - 170),
            engine.stage_a_results(),
            title="Stage A: coarse tuning",
            font=self._tiny_font,
        )
        _draw_accuracy_bars(
            surface,
            pygame.Rect(w // 2 + 10, 110, half, h - 170),
            engine.stage_b_results(),
            title="Stage B: fine tuning",
            font=self._tiny_font,
        )
        hint = self._tiny_font.render("C: export CSV  |  J: export JSON  |  Enter: run again  |  Esc: back", True, TEXT_MUTED)
        surface.blit(hint, hint.get_rect(midbottom=(w // 2, h - 30)))


class FreePlayScreen:
    _settings_labels = ("Flash Duration", "Max Noise Level", "Clarity Rhythm")

    def __init__(self, app: App, *, session_factory: Callable[[], FreePlaySession]) -> None:
        self._app = app
        self._session = session_factory()
        self._input = ""
        self._row = 0
        self._player = _StimulusPlayer(seed=_new_seed())
        self._show_debug = app.debug
        self._small_font = pygame.font.Font(None, 24)
        self._tiny_font = pygame.font.Font(None, 18)
        self._mid_font = pygame.font.Font(None, 40)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        session = self._session

        if event.key == pygame.K_ESCAPE:
            self._app.pop()
            return
        if event.key == pygame.K_F3:
            self._show_debug = not self._show_debug
            return

        if session.step is TrialStep.RESPONSE:
            if event.key == pygame.K_BACKSPACE:
                self._input = self._input[:-1]
            elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
                if session.submit_guess(self._input):
                    self._input = ""
            elif event.key == pygame.K_F1 or getattr(event, "unicode", "") == "?":
                if session.submit_dont_know():
                    self._input = ""
            else:
                ch = _guess_char(event)
                if ch and len(self._input) < WORD_LENGTH:
                    self._input += ch
            return

        if session.step is TrialStep.PRESENT:
            return
        if event.key == pygame.K_UP:
            self._row = (self._row - 1) % len(self._settings_labels)
        elif event.key == pygame.K_DOWN:
            self._row = (self._row + 1) % len(self._settings_labels)
        elif event.key in (pygame.K_LEFT, pygame.K_RIGHT):
            delta = 1 if event.key == pygame.K_RIGHT else -1
            if self._row == 0:
                session.adjust_duration(delta)
            elif self._row == 1:
                session.adjust_noise(delta)
            else:
                session.adjust_frequency(delta)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            session.set_refresh_rate(self._app.refresh_rate_hz)
            session.start_trial()

    def render(self, surface: pygame.Surface) -> None:
        session = self._session
        session.update()
        surface.fill(BG)
        w, h = surface.get_size()

        title = self._mid_font.render("Free Play", True, ACCENT)
        surface.blit(title, title.get_rect(midtop=(w // 2, 14)))

        s = session.settings
        values = (f"{s.duration_ms:.0f} ms", f"{s.noise_level:.2f}", f"{s.frequency_hz} Hz")
        for i, (label, value) in enumerate(zip(self._settings_labels, values)):
            color = ACCENT if i == self._row else TEXT_MAIN
            text = self._small_font.render(f"{label}: {value}", True, color)
            surface.blit(text, (24, 70 + i * 30))

        chart = pygame.Rect(24, 170, 260, 120)
        pygame.draw.rect(surface, PANEL_BG, chart)
        curve = preview_noise_curve(s.duration_ms, s.noise_level, s.frequency_hz)
        lo, hi = s.noise_level * s.noise_level, s.noise_level
        if len(curve) >= 2 and hi > lo:
            # Plot spans the clear floor (max^2) to the max noise level.
            pts = [
                (
                    chart.x + int(chart.w * t / s.duration_ms),
                    chart.bottom - 4 - int((chart.h - 8) * (n - lo) / (hi - lo)),
                )
                for t, n in curve
            ]
            pygame.draw.lines(surface, ACCENT, False, pts, 2)

        stim_rect = pygame.Rect(0, 0, *STIMULUS_SIZE)
        stim_rect.topleft = (w - STIMULUS_SIZE[0] - 24, 70)
        trial = session.trial
        if session.step is TrialStep.PRESENT and trial is not None:
            self._player.load(trial, trial.word, trial.envelope)
            if not self._player.step():
                session.mark_presented()
        else:
            self._player.clear()
        surface.blit(self._player.surface, stim_rect)
        pygame.draw.rect(surface, (75, 85, 99), stim_rect, 2)
        if self._show_debug and trial is not None:
            _draw_debug_overlay(surface, stim_rect, trial.envelope, config=RhythmTestConfig(), font=self._tiny_font)

        y = stim_rect.bottom + 16
        if session.step is TrialStep.RESPONSE:
            text = self._mid_font.render(self._input or "_", True, TEXT_MAIN)
            surface.blit(text, text.get_rect(midtop=(stim_rect.centerx, y)))
        elif session.feedback:
            text = self._mid_font.render(session.feedback, True, TEXT_MUTED)
            surface.blit(text, text.get_rect(midtop=(stim_rect.centerx, y)))

        score = session.score
        text = self._mid_font.render(f"Score: {score.correct} / {score.total}", True, TEXT_MAIN)
        surface.blit(text, text.get_rect(midbottom=(w // 2, h - 40)))
        hint = self._tiny_font.render(
            "Up/Down: setting  |  Left/Right: adjust  |  Enter: start trial  |  ? = I don't know  |  Esc: back",
            True,
            TEXT_MUTED,
        )
        surface.blit(hint, hint.get_rect(midbottom=(w // 2, h - 12)))


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def _open_display() -> tuple[pygame.Surface, bool]:
    """Open the window; the flag says whether flip() waits for vertical sync."""

    # pygame honours vsync only together with SCALED (or OPENGL).
    try:
        surface = pygame.display.set_mode(WINDOW_SIZE, pygame.SCALED | pygame.RESIZABLE, vsync=1)
    except pygame.error:
        # No vsync on this driver (e.g. headless dummy video).
        return pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE), False
    return surface, bool(pygame.display.is_vsync())


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    configure_logging()
    pygame.init()

    pygame.display.set_caption("Visual Rhythm Test")
    surface, vsync = _open_display()

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()
    real_clock = RealClock()

    app = App(
        surface=surface,
        font=font,
        probe=RefreshRateProbe(clock=real_clock),
        db_path=default_db_path(),
        export_dir=default_export_dir(),
        vsync=vsync,
        debug=os.environ.get(DEBUG_ENV, "0") == "1",
    )

    def open_adaptive_test() -> None:
        seed = _new_seed()
        app.push(
            RhythmTestScreen(
                app,
                engine_factory=lambda: RhythmTestEngine(
                    clock=real_clock,
                    seed=seed,
                    refresh_rate_hz=app.refresh_rate_hz,
                ),
            )
        )

    def open_custom_stage_b() -> None:
        seed = _new_seed()
        app.push(
            RhythmTestScreen(
                app,
                engine_factory=lambda: RhythmTestEngine(
                    clock=real_clock,
                    seed=seed,
                    refresh_rate_hz=app.refresh_rate_hz,
                ),
                custom=True,
            )
        )

    def open_free_play() -> None:
        seed = _new_seed()
        app.push(
            FreePlayScreen(
                app,
                session_factory=lambda: FreePlaySession(
                    clock=real_clock,
                    seed=seed,
                    refresh_rate_hz=app.refresh_rate_hz,
                ),
            )
        )

    main_items = [
        MenuItem("Adaptive Test", open_adaptive_test),
        MenuItem("Custom Stage B", open_custom_stage_b),
        MenuItem("Free Play", open_free_play),
        MenuItem("Quit", app.quit),
    ]
    app.push(MenuScreen(app, "Visual Rhythm", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()
            app.frame_presented()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(app.loop_fps)
    finally:
        pygame.quit()

    return 0
