from __future__ import annotations

from dataclasses import dataclass

import pytest

from visual_rhythm.results import session_result_from_engine
from visual_rhythm.rhythm_core import RhythmTestConfig, Stage
from visual_rhythm.rhythm_test import RhythmTestEngine, TrialStep


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


# Simulated observer: reads the word whenever noise is below its per-frequency limit.
# 15 Hz tolerates the least noise, so it has the lowest threshold and becomes the Stage B centre.
OBSERVER_LIMITS = {5: 0.95, 10: 0.97, 15: 0.93}


def _observer_reads(frequency_hz: int, noise_level: float, stage: Stage) -> bool:
    if stage is Stage.STAGE_B:
        return frequency_hz == 15
    return noise_level < OBSERVER_LIMITS[frequency_hz]


def _play_stage(engine: RhythmTestEngine, clock: FakeClock) -> None:
    stage = engine.stage
    for _ in range(1000):
        if engine.stage is not stage:
            return
        trial = engine.current_trial
        assert trial is not None
        assert engine.step is TrialStep.PRESENT

        # One display frame per envelope value.
        clock.advance(trial.envelope.frame_count / trial.refresh_rate_hz)
        assert engine.mark_presented() is True

        clock.advance(0.6)
        if _observer_reads(trial.frequency_hz, trial.noise_level, trial.stage):
            assert engine.submit_guess(trial.word.lower()) is True
        else:
            assert engine.submit_dont_know() is True

        clock.advance(engine.config.feedback_s + 0.01)
        engine.update()
    raise AssertionError("stage did not finish")


def test_headless_scripted_session_centres_stage_b_on_lowest_threshold() -> None:
    clock = FakeClock()
    cfg = RhythmTestConfig(
        stage_a_frequencies=(5, 10, 15),
        trials_per_frequency_stage_a=12,
        trials_per_frequency_stage_b=2,
        feedback_s=0.5,
    )
    engine = RhythmTestEngine(clock=clock, seed=2024, config=cfg)

    engine.start_stage_a()
    _play_stage(engine, clock)
    assert engine.stage is Stage.INTERMISSION

    stage_a = {r.frequency_hz: r for r in engine.stage_a_results()}
    assert set(stage_a) == {5, 10, 15}
    assert all(r.threshold is not None for r in stage_a.values())
    assert not any(r.is_pinned for r in stage_a.values())
    # Converged staircases stop early, so some queued trials were skipped.
    assert sum(r.total for r in stage_a.values()) < 36
    assert stage_a[15].threshold < stage_a[5].threshold < stage_a[10].threshold

    plan = engine.stage_b_plan
    assert plan is not None
    assert plan.center_frequency_hz == 15
    assert plan.suggested_frequencies == (13, 14, 15, 16, 17)
    expected_noise = round(sum(r.threshold for r in stage_a.values()) / 3, 6)
    assert plan.noise_level == pytest.approx(expected_noise)

    engine.start_stage_b(list(plan.suggested_frequencies))
    _play_stage(engine, clock)
    assert engine.stage is Stage.COMPLETE

    peak = engine.peak_result()
    assert peak is not None
    assert peak.frequency_hz == 15
    assert peak.accuracy == 1.0

    result = session_result_from_engine(engine)
    assert result.final_stage is Stage.COMPLETE
    assert result.seed == 2024
    assert result.custom_stage_b is False
    assert result.center_frequency_hz == 15
    assert result.peak_frequency_hz == 15
    assert result.stage_b_noise_level == plan.noise_level
    assert result.attempted == len(engine.events())
    assert result.mean_rt_ms == pytest.approx(600.0)
    assert result.median_rt_ms == pytest.approx(600.0)

    b_records = [r for r in result.records if r.stage is Stage.STAGE_B]
    assert len(b_records) == 10
    assert sum(1 for r in b_records if r.is_correct) == 2
    assert all(r.dont_know for r in b_records if not r.is_correct)
    assert [r.seq for r in result.records] == list(range(len(result.records)))
