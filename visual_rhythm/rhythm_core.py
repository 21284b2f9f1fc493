from __future__ import annotations

import math
import random
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, TypeVar

T = TypeVar("T")

# Stepped noise levels are rounded so that repeated steps land exactly on the bounds.
NOISE_DECIMALS = 6


class Stage(str, Enum):
    IDLE = "idle"
    STAGE_A = "stage_a"
    INTERMISSION = "intermission"
    STAGE_B = "stage_b"
    COMPLETE = "complete"


class RandomSource(Protocol):
    """Injectable source for every random draw made by the engine."""

    def randint(self, a: int, b: int) -> int: ...

    def uniform(self, a: float, b: float) -> float: ...

    def choice(self, seq: Sequence[T]) -> T: ...


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def uniform(self, a: float, b: float) -> float:
        return self._rng.uniform(a, b)

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)


@dataclass(frozen=True, slots=True)
class RhythmTestConfig:
    """Read-only constants for one test session."""

    initial_noise: float = 0.96
    noise_step_initial: float = 0.02
    noise_step_fine: float = 0.01
    noise_min: float = 0.90
    noise_max: float = 1.00

    reversals_to_reduce_step: int = 3
    max_reversals: int = 8
    reversals_for_threshold: int = 6
    pin_threshold: int = 3

    trials_per_frequency_stage_a: int = 20
    trials_per_frequency_stage_b: int = 15
    stage_a_frequencies: tuple[int, ...] = (5, 10, 15, 20, 25, 30)
    stage_b_frequency_count: int = 5
    min_frequency_hz: int = 1
    max_frequency_hz: int = 30

    # Envelope calibration. The divisor maps the normalized signal's typical
    # excursion (about 3 x RMS) onto the full noise range.
    target_rms: float = 0.3
    rms_excursion_divisor: float = 3.0

    duration_ms: float = 200.0
    randomize_phase: bool = True
    feedback_s: float = 2.0

    def __post_init__(self) -> None:
        if not (0.0 <= self.noise_min < self.noise_max <= 1.0):
            raise ValueError("noise bounds must satisfy 0 <= noise_min < noise_max <= 1")
        if not (self.noise_min <= self.initial_noise <= self.noise_max):
            raise ValueError("initial_noise must lie within [noise_min, noise_max]")
        if self.noise_step_initial <= 0.0 or self.noise_step_fine <= 0.0:
            raise ValueError("noise steps must be > 0")
        if self.reversals_to_reduce_step < 1:
            raise ValueError("reversals_to_reduce_step must be >= 1")
        if self.max_reversals < 1:
            raise ValueError("max_reversals must be >= 1")
        if self.reversals_for_threshold < 1:
            raise ValueError("reversals_for_threshold must be >= 1")
        if self.pin_threshold < 1:
            raise ValueError("pin_threshold must be >= 1")
        if self.trials_per_frequency_stage_a <= 0 or self.trials_per_frequency_stage_b <= 0:
            raise ValueError("trials per frequency must be > 0")
        if not (1 <= self.min_frequency_hz <= self.max_frequency_hz):
            raise ValueError("frequency range must satisfy 1 <= min_frequency_hz <= max_frequency_hz")
        if not self.stage_a_frequencies:
            raise ValueError("stage_a_frequencies must not be empty")
        if len(set(self.stage_a_frequencies)) != len(self.stage_a_frequencies):
            raise ValueError("stage_a_frequencies must not contain duplicates")
        for f in self.stage_a_frequencies:
            if not self.frequency_in_range(f):
                raise ValueError(
                    f"stage A frequency {f!r} outside [{self.min_frequency_hz}, {self.max_frequency_hz}]"
                )
        if self.stage_b_frequency_count < 1:
            raise ValueError("stage_b_frequency_count must be >= 1")
        if self.target_rms <= 0.0:
            raise ValueError("target_rms must be > 0")
        if self.rms_excursion_divisor <= 0.0:
            raise ValueError("rms_excursion_divisor must be > 0")
        if self.duration_ms <= 0.0:
            raise ValueError("duration_ms must be > 0")
        if self.feedback_s < 0.0:
            raise ValueError("feedback_s must be >= 0")

    def frequency_in_range(self, frequency_hz: object) -> bool:
        if isinstance(frequency_hz, bool) or not isinstance(frequency_hz, int):
            return False
        return self.min_frequency_hz <= frequency_hz <= self.max_frequency_hz

    def clamp_noise(self, value: float) -> float:
        return clamp(value, self.noise_min, self.noise_max)


def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x <= lo else hi if x >= hi else float(x)


def round_noise(x: float) -> float:
    return round(float(x), NOISE_DECIMALS)


def round_half_up(x: float) -> int:
    # Matches the usual "0.5 rounds up" convention for frame counts.
    return int(math.floor(x + 0.5))
