from __future__ import annotations

from collections.abc import Sequence

import numpy as np


def compose_masked_frame(word_luma: np.ndarray, density: float, rng: np.random.Generator) -> np.ndarray:
    """Replace each pixel of ``word_luma`` with grey noise with probability ``density``.

    ``word_luma`` is a 2-D uint8 array (0 = background, 255 = ink). Returns an
    RGB uint8 array of shape ``word_luma.shape + (3,)``.
    """

    if word_luma.ndim != 2:
        raise ValueError("word_luma must be a 2-D array")
    if not (0.0 <= density <= 1.0):
        raise ValueError("density must be in [0.0, 1.0]")

    mask = rng.random(word_luma.shape) < density
    noise = rng.integers(0, 255, size=word_luma.shape, dtype=np.uint8)
    luma = np.where(mask, noise, word_luma).astype(np.uint8)
    return np.repeat(luma[:, :, np.newaxis], 3, axis=2)


def envelope_overlay_points(
    values: Sequence[float],
    *,
    x: int,
    y: int,
    width: int,
    height: int,
    noise_min: float,
    noise_max: float,
) -> list[tuple[int, int]]:
    """Map envelope values into a plot box, centred on the middle of the noise range."""

    if not values:
        return []
    mid = (noise_min + noise_max) / 2.0
    amplitude = (noise_max - noise_min) / 2.0
    half = height / 2.0 - 5.0
    points: list[tuple[int, int]] = []
    for i, v in enumerate(values):
        normalized = 0.0 if amplitude <= 0.0 else (float(v) - mid) / amplitude
        px = x + (i / len(values)) * width
        py = y + height / 2.0 - normalized * half
        points.append((int(round(px)), int(round(py))))
    return points
