from __future__ import annotations

from dataclasses import dataclass

from .rhythm_core import Stage
from .rhythm_test import FrequencyResult, RhythmTestEngine, TrialRecord


@dataclass(frozen=True, slots=True)
class SessionResult:
    """Persistable summary + trial log for a finished (or abandoned) session."""

    test_code: str
    test_version: int
    seed: int
    refresh_rate_hz: int
    duration_ms: float
    final_stage: Stage
    custom_stage_b: bool

    stage_b_noise_level: float | None
    center_frequency_hz: int | None

    stage_a: list[FrequencyResult]
    stage_b: list[FrequencyResult]
    peak_frequency_hz: int | None

    attempted: int
    correct: int
    accuracy: float
    mean_rt_ms: float | None
    median_rt_ms: float | None

    records: list[TrialRecord]


def session_result_from_engine(
    engine: RhythmTestEngine,
    *,
    test_code: str = "visual_rhythm",
    test_version: int = 1,
) -> SessionResult:
    """Build a SessionResult from the engine's current state."""

    records = engine.events()
    rts_ms = sorted(int(round(r.response_time_s * 1000.0)) for r in records)

    mean_ms: float | None
    median_ms: float | None
    if not rts_ms:
        mean_ms = None
        median_ms = None
    else:
        mean_ms = float(sum(rts_ms)) / float(len(rts_ms))
        mid = len(rts_ms) // 2
        if len(rts_ms) % 2 == 1:
            median_ms = float(rts_ms[mid])
        else:
            median_ms = float(rts_ms[mid - 1] + rts_ms[mid]) / 2.0

    attempted = len(records)
    correct = sum(1 for r in records if r.is_correct)
    plan = engine.stage_b_plan
    peak = engine.peak_result()

    return SessionResult(
        test_code=str(test_code),
        test_version=int(test_version),
        seed=int(engine.seed),
        refresh_rate_hz=int(engine.refresh_rate_hz),
        duration_ms=float(engine.config.duration_ms),
        final_stage=engine.stage,
        custom_stage_b=engine.is_custom_stage_b,
        stage_b_noise_level=engine.stage_b_noise_level,
        center_frequency_hz=None if plan is None else int(plan.center_frequency_hz),
        stage_a=engine.stage_a_results(),
        stage_b=engine.stage_b_results(),
        peak_frequency_hz=None if peak is None else int(peak.frequency_hz),
        attempted=attempted,
        correct=correct,
        accuracy=0.0 if attempted == 0 else correct / attempted,
        mean_rt_ms=mean_ms,
        median_rt_ms=median_ms,
        records=records,
    )
