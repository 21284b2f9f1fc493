"""1-up/1-down staircase tracking one frequency's noise threshold.

A correct response makes the next trial harder (more noise), an incorrect one
makes it easier. The track converges on the noise level giving roughly 50%
accuracy. Staircases are immutable: ``update_staircase`` returns a new value
and the caller re-inserts it wherever it keeps its state.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from .rhythm_core import RhythmTestConfig, round_noise


class Direction(StrEnum):
    HARDER = "harder"
    EASIER = "easier"


@dataclass(frozen=True, slots=True)
class Staircase:
    frequency_hz: int
    noise_level: float
    step_size: float
    reversals: int = 0
    reversal_values: tuple[float, ...] = ()  # noise level before each reversing step
    trial_count: int = 0
    correct_count: int = 0
    last_direction: Direction | None = None
    is_complete: bool = False
    noise_history: tuple[float, ...] = ()
    is_pinned: bool = False
    pinned_count: int = 0  # consecutive trials with no effective change at a bound

    @property
    def accuracy(self) -> float:
        return 0.0 if self.trial_count == 0 else self.correct_count / self.trial_count

    @property
    def noise_range(self) -> tuple[float, float]:
        history = self.noise_history or (self.noise_level,)
        return (min(history), max(history))


def initialize_staircase(frequency_hz: int, *, config: RhythmTestConfig) -> Staircase:
    if isinstance(frequency_hz, bool) or not isinstance(frequency_hz, int) or frequency_hz <= 0:
        raise ValueError(f"frequency_hz must be a positive integer, got {frequency_hz!r}")
    return Staircase(
        frequency_hz=frequency_hz,
        noise_level=config.initial_noise,
        step_size=config.noise_step_initial,
        noise_history=(config.initial_noise,),
    )


def update_staircase(staircase: Staircase, is_correct: bool, *, config: RhythmTestConfig) -> Staircase:
    """Apply one trial outcome and return the next staircase state.

    A completed staircase is returned unchanged.
    """

    if staircase.is_complete:
        return staircase

    trial_count = staircase.trial_count + 1
    correct_count = staircase.correct_count + (1 if is_correct else 0)

    direction = Direction.HARDER if is_correct else Direction.EASIER
    old_level = staircase.noise_level
    delta = staircase.step_size if is_correct else -staircase.step_size
    next_level = config.clamp_noise(round_noise(old_level + delta))

    at_bound = next_level in (config.noise_min, config.noise_max)
    if next_level == old_level and at_bound:
        pinned_count = staircase.pinned_count + 1
    else:
        pinned_count = 0

    is_pinned = staircase.is_pinned
    is_complete = False
    if pinned_count >= config.pin_threshold:
        is_pinned = True
        is_complete = True

    reversals = staircase.reversals
    reversal_values = staircase.reversal_values
    step_size = staircase.step_size
    if staircase.last_direction is not None and staircase.last_direction is not direction:
        reversals += 1
        reversal_values = reversal_values + (old_level,)
        if reversals >= config.reversals_to_reduce_step:
            step_size = config.noise_step_fine

    if reversals >= config.max_reversals:
        is_complete = True

    return replace(
        staircase,
        noise_level=next_level,
        step_size=step_size,
        reversals=reversals,
        reversal_values=reversal_values,
        trial_count=trial_count,
        correct_count=correct_count,
        last_direction=direction,
        is_complete=is_complete,
        noise_history=staircase.noise_history + (next_level,),
        is_pinned=is_pinned,
        pinned_count=pinned_count,
    )


def estimate_threshold(staircase: Staircase, *, config: RhythmTestConfig) -> float:
    """Threshold noise level from the late reversals of ``staircase``.

    A pinned staircase reports the bound it is stuck at. Without reversals the
    current level is the best available guess.
    """

    if staircase.is_pinned:
        return staircase.noise_level

    values = staircase.reversal_values
    if not values:
        return staircase.noise_level

    window = values[-min(len(values), config.reversals_for_threshold) :]
    return sum(window) / len(window)
