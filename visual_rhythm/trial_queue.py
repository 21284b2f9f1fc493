from __future__ import annotations

from collections.abc import Sequence

from .rhythm_core import RandomSource


def build_interleaved_queue(
    frequencies: Sequence[int],
    trials_per_frequency: int,
    *,
    rng: RandomSource,
) -> list[int]:
    """Return every frequency ``trials_per_frequency`` times in shuffled order.

    The whole multiset is permuted (Fisher-Yates) so the subject cannot
    anticipate which rhythm comes next.
    """

    if not frequencies:
        raise ValueError("frequencies must not be empty")
    if trials_per_frequency <= 0:
        raise ValueError("trials_per_frequency must be > 0")
    if len(set(frequencies)) != len(frequencies):
        raise ValueError("frequencies must not contain duplicates")
    for f in frequencies:
        if isinstance(f, bool) or not isinstance(f, int) or f <= 0:
            raise ValueError(f"frequency must be a positive integer, got {f!r}")

    queue = [int(f) for f in frequencies for _ in range(int(trials_per_frequency))]
    for i in range(len(queue) - 1, 0, -1):
        j = int(rng.randint(0, i))
        queue[i], queue[j] = queue[j], queue[i]
    return queue
