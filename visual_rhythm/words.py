from __future__ import annotations

from .rhythm_core import RandomSource

WORD_LIST: tuple[str, ...] = (
    "BRAIN", "PULSE", "FOCUS", "QUICK", "VISON", "IMAGE", "FRAME", "NOISE",
    "ALPHA", "THETA", "WAVES", "STUDY", "GRAPH", "MODEL", "REACT", "CYCLE",
    "SPEED", "DEPTH", "SENSE", "INPUT", "TIMER", "PIXEL", "FLASH", "CLOCK",
    "LIGHT", "SOUND", "COLOR", "BLOCK", "CHART", "FIELD", "GUARD", "HEART",
    "INDEX", "JOINT", "KNOCK", "LAYER", "MAJOR", "NIGHT", "ORDER", "PANEL",
    "QUERY", "ROUTE", "SCALE", "TABLE", "UNITY", "VALUE", "WHITE", "YIELD",
    "ZEBRA",
)

WORD_LENGTH = 5


class WordGenerator:
    """Draws the flashed word for each trial from an injected RNG."""

    def __init__(self, rng: RandomSource, words: tuple[str, ...] = WORD_LIST) -> None:
        if not words:
            raise ValueError("words must not be empty")
        self._rng = rng
        self._words = tuple(w.upper() for w in words)

    def next_word(self) -> str:
        return str(self._rng.choice(self._words))


def normalize_guess(raw: str) -> str:
    return str(raw).strip().upper()


def is_correct_guess(word: str, raw: str) -> bool:
    return normalize_guess(raw) == word.upper()
