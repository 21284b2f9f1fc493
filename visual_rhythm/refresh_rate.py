from __future__ import annotations

import math

from .clock import Clock


def quantize_refresh_rate(measured_fps: float) -> int:
    """Snap a measured frame rate to the nominal display rate (60, 120 or 144)."""

    fps = float(measured_fps)
    if not math.isfinite(fps) or fps <= 0.0:
        raise ValueError(f"measured_fps must be a positive finite number, got {measured_fps!r}")
    if fps > 130.0:
        return 144
    if fps > 90.0:
        return 120
    return 60


class RefreshRateProbe:
    """Counts presented frames over a short window to estimate the display rate.

    Call ``tick()`` once per flipped frame. The first tick starts the window.
    """

    def __init__(self, *, clock: Clock, sample_s: float = 1.0) -> None:
        if sample_s <= 0.0:
            raise ValueError("sample_s must be > 0")
        self._clock = clock
        self._sample_s = float(sample_s)
        self._started_at_s: float | None = None
        self._frames = 0
        self._measured_fps: float | None = None

    @property
    def done(self) -> bool:
        return self._measured_fps is not None

    @property
    def measured_fps(self) -> float | None:
        return self._measured_fps

    def tick(self) -> None:
        if self.done:
            return
        now = self._clock.now()
        if self._started_at_s is None:
            self._started_at_s = now
        self._frames += 1
        elapsed = now - self._started_at_s
        if elapsed >= self._sample_s:
            self._measured_fps = float(round(self._frames / elapsed))


def is_loop_limited(measured_fps: float, loop_cap_fps: float) -> bool:
    """True when the loop ran at (close to) its own frame cap rather than the display rate."""

    return float(measured_fps) >= 0.95 * float(loop_cap_fps)


def effective_refresh_rate(
    measured_fps: float | None,
    *,
    vsync: bool,
    loop_cap_fps: float,
    fallback_hz: int = 60,
) -> int:
    """Display rate to build envelopes for.

    A probe only measures the monitor when ``flip()`` waits for vertical sync.
    Without vsync, or when the loop hit its own cap, ``fallback_hz`` is used
    and the caller must pace its loop at that rate.
    """

    if not vsync or measured_fps is None or measured_fps <= 0.0:
        return fallback_hz
    if is_loop_limited(measured_fps, loop_cap_fps):
        return fallback_hz
    return quantize_refresh_rate(measured_fps)
