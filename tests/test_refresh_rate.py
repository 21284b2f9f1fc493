from __future__ import annotations

from dataclasses import dataclass

import pytest

from visual_rhythm.refresh_rate import (
    RefreshRateProbe,
    effective_refresh_rate,
    is_loop_limited,
    quantize_refresh_rate,
)


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def _measure(fps: float, *, sample_s: float = 0.5) -> RefreshRateProbe:
    clock = FakeClock()
    probe = RefreshRateProbe(clock=clock, sample_s=sample_s)
    for _ in range(10_000):
        if probe.done:
            break
        probe.tick()
        clock.advance(1.0 / fps)
    return probe


@pytest.mark.parametrize(
    ("fps", "expected"),
    [
        (59.0, 60),
        (60.0, 60),
        (75.0, 60),
        (90.0, 60),
        (100.0, 120),
        (120.0, 120),
        (130.0, 120),
        (140.0, 144),
        (165.0, 144),
    ],
)
def test_quantize_snaps_to_nominal_rate(fps: float, expected: int) -> None:
    assert quantize_refresh_rate(fps) == expected


@pytest.mark.parametrize("bad", [0.0, -60.0, float("nan"), float("inf")])
def test_quantize_rejects_invalid_measurement(bad: float) -> None:
    with pytest.raises(ValueError):
        quantize_refresh_rate(bad)


def test_probe_has_no_measurement_until_window_elapsed() -> None:
    clock = FakeClock()
    probe = RefreshRateProbe(clock=clock, sample_s=1.0)

    for _ in range(10):
        probe.tick()
        clock.advance(1.0 / 144.0)

    assert probe.done is False
    assert probe.measured_fps is None
    assert effective_refresh_rate(probe.measured_fps, vsync=True, loop_cap_fps=500) == 60


def test_probe_measures_high_refresh_display() -> None:
    probe = _measure(144.0)

    assert probe.measured_fps is not None
    assert 140.0 <= probe.measured_fps <= 148.0
    assert effective_refresh_rate(probe.measured_fps, vsync=True, loop_cap_fps=500) == 144

    # Further ticks do not change a finished measurement.
    measured = probe.measured_fps
    probe.tick()
    assert probe.measured_fps == measured


def test_probe_measures_sixty_hz_display() -> None:
    probe = _measure(60.0, sample_s=1.0)

    assert probe.done is True
    assert effective_refresh_rate(probe.measured_fps, vsync=True, loop_cap_fps=500) == 60


def test_unsynced_loop_rate_is_not_taken_as_display_rate() -> None:
    # Without vsync the probe only sees the loop cap (about 247 fps here).
    probe = _measure(247.0)
    assert probe.measured_fps is not None
    assert quantize_refresh_rate(probe.measured_fps) == 144

    assert effective_refresh_rate(probe.measured_fps, vsync=False, loop_cap_fps=240) == 60
    assert effective_refresh_rate(probe.measured_fps, vsync=False, loop_cap_fps=240, fallback_hz=120) == 120


def test_vsync_request_that_did_not_throttle_falls_back() -> None:
    # vsync reported, but the loop still ran at its own cap.
    probe = _measure(498.0)
    assert probe.measured_fps is not None

    assert is_loop_limited(probe.measured_fps, 500) is True
    assert effective_refresh_rate(probe.measured_fps, vsync=True, loop_cap_fps=500) == 60
    assert is_loop_limited(144.0, 500) is False
