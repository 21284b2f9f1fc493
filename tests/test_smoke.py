"""Smoke tests for the pygame UI.

These tests verify that the application's main loop can initialise and
execute a handful of frames without crashing when the SDL dummy video
driver is used. Navigation is driven by posting synthetic key events.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

# Use the dummy drivers before importing pygame or the application
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


@pytest.fixture(autouse=True)
def _isolated_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VISUAL_RHYTHM_DB_PATH", str(tmp_path / "results.sqlite3"))
    monkeypatch.setenv("VISUAL_RHYTHM_EXPORT_DIR", str(tmp_path))


def _key(key: int, unicode: str = "") -> None:
    import pygame

    pygame.event.post(pygame.event.Event(pygame.KEYDOWN, {"key": key, "unicode": unicode, "mod": 0}))


def test_app_runs_headless() -> None:
    """Ensure the application can start and run a few frames headlessly."""
    # Import inside the test so that environment variables take effect
    from visual_rhythm.app import run

    exit_code = run(max_frames=3)
    assert exit_code == 0


def test_ui_smoke_start_adaptive_test_and_type_guess() -> None:
    import pygame

    from visual_rhythm.app import run

    def inject(frame: int) -> None:
        # Main Menu -> Adaptive Test -> start Stage A -> let the stimulus play -> answer
        if frame == 1:
            _key(pygame.K_RETURN)
        elif frame == 2:
            _key(pygame.K_RETURN)
        elif frame == 3:
            _key(pygame.K_F3)
        elif frame == 40:
            for ch in "brain":
                _key(getattr(pygame, f"K_{ch}"), ch)
        elif frame == 41:
            _key(pygame.K_BACKSPACE)
        elif frame == 42:
            _key(pygame.K_RETURN)
        elif frame == 50:
            # Mid-stage Esc is ignored; Shift+Esc abandons the session.
            _key(pygame.K_ESCAPE)
        elif frame == 51:
            pygame.event.post(
                pygame.event.Event(
                    pygame.KEYDOWN,
                    {"key": pygame.K_ESCAPE, "unicode": "", "mod": pygame.KMOD_LSHIFT},
                )
            )

    assert run(max_frames=60, event_injector=inject) == 0


def test_ui_smoke_custom_stage_b_and_free_play() -> None:
    import pygame

    from visual_rhythm.app import run

    def inject(frame: int) -> None:
        if frame == 1:
            _key(pygame.K_DOWN)
        elif frame == 2:
            _key(pygame.K_RETURN)  # Custom Stage B
        elif frame == 3:
            for _ in range(5):
                _key(pygame.K_SPACE)
                _key(pygame.K_RIGHT)
            _key(pygame.K_MINUS, "-")
        elif frame == 4:
            _key(pygame.K_RETURN)
        elif frame == 30:
            _key(pygame.K_F1)
        elif frame == 31:
            pygame.event.post(
                pygame.event.Event(
                    pygame.KEYDOWN,
                    {"key": pygame.K_ESCAPE, "unicode": "", "mod": pygame.KMOD_LSHIFT},
                )
            )
        elif frame == 32:
            _key(pygame.K_DOWN)
        elif frame == 33:
            _key(pygame.K_RETURN)  # Free Play
        elif frame == 34:
            _key(pygame.K_RIGHT)
            _key(pygame.K_RETURN)
        elif frame == 50:
            _key(pygame.K_ESCAPE)

    assert run(max_frames=60, event_injector=inject) == 0


class _StepClock:
    def __init__(self) -> None:
        self.t = 0.0

    def now(self) -> float:
        return self.t


def _present_frames(app: object, clock: _StepClock, fps: float, probe: object) -> None:
    for _ in range(10_000):
        if probe.done:
            break
        app.frame_presented()
        clock.t += 1.0 / fps


def test_refresh_probe_falls_back_to_sixty_hz_without_vsync(tmp_path: Path) -> None:
    import pygame

    from visual_rhythm.app import MAX_FPS, App, _open_display
    from visual_rhythm.refresh_rate import RefreshRateProbe

    pygame.init()
    try:
        surface, vsync = _open_display()
        assert isinstance(surface, pygame.Surface)
        assert isinstance(vsync, bool)

        font = pygame.font.Font(None, 24)
        clock = _StepClock()
        probe = RefreshRateProbe(clock=clock)
        app = App(surface, font, probe=probe, db_path=tmp_path / "r.sqlite3", export_dir=tmp_path, vsync=False)
        assert app.refresh_rate_hz == 60
        assert app.loop_fps == 60

        # An unthrottled loop near 247 fps would otherwise quantize to 144 Hz.
        _present_frames(app, clock, 247.0, probe)
        assert probe.done is True
        assert app.display_synced is False
        assert app.refresh_rate_hz == 60
        assert app.loop_fps == 60

        # vsync reported but the loop still hit its own cap: not a display rate.
        clock = _StepClock()
        probe = RefreshRateProbe(clock=clock)
        app = App(surface, font, probe=probe, db_path=tmp_path / "r.sqlite3", export_dir=tmp_path, vsync=True)
        assert app.display_synced is True
        assert app.loop_fps == MAX_FPS
        _present_frames(app, clock, MAX_FPS - 5, probe)
        assert app.display_synced is False
        assert app.refresh_rate_hz == 60
        assert app.loop_fps == 60

        # A real synced 144 Hz display is trusted.
        clock = _StepClock()
        probe = RefreshRateProbe(clock=clock)
        app = App(surface, font, probe=probe, db_path=tmp_path / "r.sqlite3", export_dir=tmp_path, vsync=True)
        _present_frames(app, clock, 144.0, probe)
        assert app.display_synced is True
        assert app.refresh_rate_hz == 144
        assert app.loop_fps == MAX_FPS
    finally:
        pygame.quit()
