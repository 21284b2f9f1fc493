"""Per-frame noise-density envelopes for the flashed word.

Each trial modulates the masking noise with a sinusoid at the trial frequency.
The sinusoid is zero-meaned and rescaled to a fixed RMS before mapping, so
every frequency delivers the same modulation energy and only the rhythm
differs between trials.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from .rhythm_core import RandomSource, RhythmTestConfig, round_half_up

# Below this RMS a signal is treated as carrying no modulation at all.
_SILENT_RMS = 1e-12


@dataclass(frozen=True, slots=True)
class StimulusRequest:
    frequency_hz: float
    noise_level: float
    duration_ms: float
    refresh_rate_hz: int
    randomize_phase: bool = True

    def __post_init__(self) -> None:
        if not (math.isfinite(self.frequency_hz) and self.frequency_hz > 0.0):
            raise ValueError("frequency_hz must be > 0")
        if not (0.0 <= self.noise_level <= 1.0):
            raise ValueError("noise_level must be in [0.0, 1.0]")
        if not (math.isfinite(self.duration_ms) and self.duration_ms > 0.0):
            raise ValueError("duration_ms must be > 0")
        if self.refresh_rate_hz <= 0:
            raise ValueError("refresh_rate_hz must be > 0")


@dataclass(frozen=True, slots=True)
class Envelope:
    values: tuple[float, ...]
    mean: float  # of the mapped noise values
    rms: float  # of the normalized signal, before mapping
    integral: float
    phase_rad: float

    @property
    def frame_count(self) -> int:
        return len(self.values)


def frame_count_for(duration_ms: float, refresh_rate_hz: int) -> int:
    return round_half_up((float(duration_ms) / 1000.0) * float(refresh_rate_hz))


def signal_rms(signal: np.ndarray) -> float:
    if signal.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(signal))))


def normalize_signal(signal: np.ndarray, target_rms: float) -> np.ndarray:
    """Zero-mean ``signal`` and rescale it to ``target_rms``."""

    signal = np.asarray(signal, dtype=np.float64)
    if signal.size == 0:
        return signal.copy()
    centered = signal - signal.mean()
    current = signal_rms(centered)
    if current < _SILENT_RMS:
        return np.zeros_like(centered)
    return centered * (float(target_rms) / current)


def generate_envelope(
    request: StimulusRequest,
    *,
    config: RhythmTestConfig,
    rng: RandomSource,
) -> Envelope:
    n = frame_count_for(request.duration_ms, request.refresh_rate_hz)
    phase = rng.uniform(0.0, 2.0 * math.pi) if request.randomize_phase else 0.0

    if n == 0:
        return Envelope(values=(), mean=0.0, rms=0.0, integral=0.0, phase_rad=phase)

    t = np.arange(n, dtype=np.float64) / float(request.refresh_rate_hz)
    raw = np.sin(2.0 * math.pi * float(request.frequency_hz) * t + phase)
    signal = normalize_signal(raw, config.target_rms)

    # The "clear" phase floor is max^2, so high noise settings never flash cleanly.
    max_noise = float(request.noise_level)
    min_noise = max_noise * max_noise
    mid = (min_noise + max_noise) / 2.0
    scale = (max_noise - min_noise) / (config.target_rms * config.rms_excursion_divisor)
    mapped = np.clip(mid + signal * scale, config.noise_min, config.noise_max)

    return Envelope(
        values=tuple(float(v) for v in mapped),
        mean=float(mapped.mean()),
        rms=signal_rms(signal),
        integral=float(mapped.sum()),
        phase_rad=float(phase),
    )


def preview_noise_curve(
    duration_ms: float,
    noise_level: float,
    frequency_hz: float,
    *,
    step_ms: float = 10.0,
) -> list[tuple[float, float]]:
    """Smooth noise-density curve for the settings preview (unnormalized)."""

    if step_ms <= 0.0:
        raise ValueError("step_ms must be > 0")
    max_noise = float(noise_level)
    noise_range = max_noise - max_noise * max_noise
    points: list[tuple[float, float]] = []
    t = 0.0
    while t <= duration_ms:
        clarity = (math.sin((t / 1000.0) * frequency_hz * 2.0 * math.pi) + 1.0) / 2.0
        points.append((t, max_noise - clarity * noise_range))
        t += step_ms
    return points
