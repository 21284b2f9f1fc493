"""Manual single-trial mode with operator-adjustable settings.

No staircase and no queue: every trial uses the current duration, noise level
and frequency, and only a running score is kept.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .clock import Clock
from .envelope import Envelope, StimulusRequest, generate_envelope
from .rhythm_core import RhythmTestConfig, SeededRng, clamp, round_noise
from .rhythm_test import AccuracyTally, TrialStep
from .words import WordGenerator, is_correct_guess, normalize_guess

DURATION_RANGE_MS = (20.0, 500.0)
DURATION_STEP_MS = 10.0
NOISE_STEP = 0.01


@dataclass(frozen=True, slots=True)
class FreePlaySettings:
    duration_ms: float = 200.0
    noise_level: float = 0.97
    frequency_hz: int = 10


@dataclass(frozen=True, slots=True)
class FreePlayTrial:
    word: str
    settings: FreePlaySettings
    envelope: Envelope


class FreePlaySession:
    def __init__(
        self,
        *,
        clock: Clock,
        seed: int,
        config: RhythmTestConfig | None = None,
        refresh_rate_hz: int = 60,
        settings: FreePlaySettings | None = None,
    ) -> None:
        self._clock = clock
        self._config = config or RhythmTestConfig()
        self._rng = SeededRng(seed)
        self._words = WordGenerator(self._rng)
        self._refresh_rate_hz = int(refresh_rate_hz)
        self._settings = settings or FreePlaySettings()
        self._trial: FreePlayTrial | None = None
        self._step: TrialStep | None = None
        self._step_started_at_s: float | None = None
        self._score = AccuracyTally()
        self._feedback: str | None = None

    @property
    def settings(self) -> FreePlaySettings:
        return self._settings

    @property
    def step(self) -> TrialStep | None:
        return self._step

    @property
    def trial(self) -> FreePlayTrial | None:
        return self._trial

    @property
    def score(self) -> AccuracyTally:
        return self._score

    @property
    def feedback(self) -> str | None:
        return self._feedback

    def set_refresh_rate(self, refresh_rate_hz: int) -> None:
        if refresh_rate_hz <= 0:
            raise ValueError("refresh_rate_hz must be > 0")
        self._refresh_rate_hz = int(refresh_rate_hz)

    def adjust_duration(self, steps: int) -> None:
        lo, hi = DURATION_RANGE_MS
        value = clamp(self._settings.duration_ms + steps * DURATION_STEP_MS, lo, hi)
        self._settings = replace(self._settings, duration_ms=value)

    def adjust_noise(self, steps: int) -> None:
        cfg = self._config
        value = cfg.clamp_noise(round_noise(self._settings.noise_level + steps * NOISE_STEP))
        self._settings = replace(self._settings, noise_level=value)

    def adjust_frequency(self, steps: int) -> None:
        cfg = self._config
        value = int(clamp(self._settings.frequency_hz + steps, cfg.min_frequency_hz, cfg.max_frequency_hz))
        self._settings = replace(self._settings, frequency_hz=value)

    def start_trial(self) -> bool:
        if self._step in (TrialStep.PRESENT, TrialStep.RESPONSE):
            return False
        s = self._settings
        request = StimulusRequest(
            frequency_hz=float(s.frequency_hz),
            noise_level=s.noise_level,
            duration_ms=s.duration_ms,
            refresh_rate_hz=self._refresh_rate_hz,
            randomize_phase=self._config.randomize_phase,
        )
        word = self._words.next_word()
        envelope = generate_envelope(request, config=self._config, rng=self._rng)
        self._trial = FreePlayTrial(word=word, settings=s, envelope=envelope)
        self._feedback = None
        self._step = TrialStep.PRESENT
        self._step_started_at_s = self._clock.now()
        return True

    def mark_presented(self) -> bool:
        if self._step is not TrialStep.PRESENT:
            return False
        self._step = TrialStep.RESPONSE
        return True

    def submit_guess(self, raw: str) -> bool:
        if self._step is not TrialStep.RESPONSE or self._trial is None:
            return False
        guess = normalize_guess(raw)
        if guess == "":
            return False
        ok = is_correct_guess(self._trial.word, guess)
        self._finish(ok, "Correct!" if ok else f"The word was: {self._trial.word}")
        return True

    def submit_dont_know(self) -> bool:
        if self._step is not TrialStep.RESPONSE or self._trial is None:
            return False
        self._finish(False, f"The word was: {self._trial.word}")
        return True

    def update(self) -> None:
        if self._step is not TrialStep.FEEDBACK:
            return
        assert self._step_started_at_s is not None
        if self._clock.now() - self._step_started_at_s >= self._config.feedback_s:
            self._step = None
            self._feedback = None

    def _finish(self, is_correct: bool, message: str) -> None:
        self._score = self._score.record(is_correct)
        self._feedback = message
        self._step = TrialStep.FEEDBACK
        self._step_started_at_s = self._clock.now()
