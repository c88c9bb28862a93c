from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from levelup.config import Settings, get_settings
from levelup.errors import InvalidEventError
from levelup.learning_profile import new_profile
from levelup.profile_estimator import EstimatorConfig, ProfileEstimator

START = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)


def _event(correct: int, attempts: int = 5, response_ms: float = 3000.0, **extra) -> dict:
    return {"attempts": attempts, "correct": correct, "response_times_ms": [response_ms], **extra}


def _replay(estimator: ProfileEstimator, events: list[dict], *, step: timedelta = timedelta(minutes=30)):
    profile = new_profile("u1", START)
    history = []
    for index, event in enumerate(events, start=1):
        profile = estimator.apply(profile, [event], START + step * index)
        history.append(profile)
    return history


def test_first_event_keeps_defaults_with_weak_confidence() -> None:
    estimator = ProfileEstimator()
    profile = estimator.apply(new_profile("u1", START), [_event(1)], START + timedelta(minutes=5))

    assert profile.metadata.observation_count == 1
    assert profile.metadata.confidence_score == pytest.approx(0.2)
    assert profile.momentum.state == "steady"
    assert profile.cognitive_load.level == "optimal"
    assert profile.personality.learning_style == "multimodal"
    assert profile.personality.processing_speed == "moderate"
    assert profile.cognitive_load.recent_error_rates == [pytest.approx(0.8)]


def test_apply_does_not_mutate_input() -> None:
    original = new_profile("u1", START)
    snapshot = original.model_copy(deep=True)

    ProfileEstimator().apply(original, [_event(3)], START + timedelta(hours=1))

    assert original == snapshot


def test_increasing_accuracy_builds_momentum_and_confidence() -> None:
    history = _replay(ProfileEstimator(), [_event(correct) for correct in range(1, 6)])

    confidences = [profile.metadata.confidence_score for profile in history]
    assert all(later > earlier for earlier, later in zip(confidences, confidences[1:]))
    final = history[-1]
    assert final.metadata.observation_count == 5
    assert final.momentum.state == "building"
    assert final.momentum.trend == pytest.approx(0.2)
    assert final.cognitive_load.level in {"optimal", "low"}
    assert history[1].cognitive_load.level == "overloaded"
    assert history[1].cognitive_load.recommended_action == "break"


def test_confidence_never_decreases_within_staleness_window() -> None:
    pattern = [_event(c, response_ms=ms) for c, ms in [(5, 900), (0, 9000), (2, 4000), (5, 1200)] * 5]
    history = _replay(ProfileEstimator(), pattern, step=timedelta(hours=2))

    confidences = [profile.metadata.confidence_score for profile in history]
    assert confidences == sorted(confidences)
    assert history[-1].metadata.observation_count == len(pattern)
    assert max(confidences) <= EstimatorConfig().confidence_cap


def test_batched_events_count_each_observation() -> None:
    estimator = ProfileEstimator()
    profile = estimator.apply(new_profile("u1", START), [_event(c) for c in (1, 2, 3)], START)

    assert profile.metadata.observation_count == 3
    assert profile.metadata.confidence_score == pytest.approx(estimator.confidence_curve(3))


def test_batch_is_folded_in_occurrence_order() -> None:
    estimator = ProfileEstimator()
    events = [
        _event(correct, occurred_at=(START + timedelta(minutes=minute)).isoformat())
        for correct, minute in ((5, 30), (1, 10), (3, 20))
    ]

    profile = estimator.apply(new_profile("u1", START), events, START + timedelta(hours=1))

    assert profile.momentum.recent_accuracy == pytest.approx([0.2, 0.6, 1.0])
    assert profile.momentum.state == "building"


def test_invalid_event_applies_nothing() -> None:
    estimator = ProfileEstimator()
    profile = new_profile("u1", START)

    with pytest.raises(InvalidEventError):
        estimator.apply(profile, [_event(2), {"attempts": 3, "correct": 1}], START)

    assert profile.metadata.observation_count == 0
    assert profile.metadata.confidence_score == 0.0


def test_stale_profile_confidence_decays_toward_floor() -> None:
    estimator = ProfileEstimator()
    profile = new_profile("u1", START)
    profile.metadata.confidence_score = 0.8

    fresh = estimator.decay(profile, START + timedelta(hours=48))
    stale = estimator.decay(profile, START + timedelta(days=10))
    ancient = estimator.decay(profile, START + timedelta(days=3650))

    assert fresh.metadata.confidence_score == pytest.approx(0.8)
    assert 0.3 < stale.metadata.confidence_score < 0.8
    assert ancient.metadata.confidence_score == pytest.approx(0.3)
    assert profile.metadata.confidence_score == 0.8


def test_confidence_at_or_below_floor_is_not_decayed() -> None:
    profile = new_profile("u1", START)
    profile.metadata.confidence_score = 0.25

    decayed = ProfileEstimator().decay(profile, START + timedelta(days=60))

    assert decayed.metadata.confidence_score == 0.25


def test_event_after_long_gap_starts_from_decayed_confidence() -> None:
    estimator = ProfileEstimator()
    profile = new_profile("u1", START)
    profile.metadata.confidence_score = 0.8
    profile.metadata.observation_count = 10

    updated = estimator.apply(profile, [_event(4)], START + timedelta(days=20))

    gain = estimator.confidence_curve(11) - estimator.confidence_curve(10)
    assert updated.metadata.confidence_score < 0.8 + gain
    assert updated.metadata.last_updated == START + timedelta(days=20)


def test_flat_accuracy_stalls_momentum() -> None:
    history = _replay(ProfileEstimator(), [_event(3) for _ in range(5)])

    assert history[1].momentum.state == "steady"
    assert history[3].momentum.state == "stalled"
    assert history[-1].momentum.flat_streak == 4


def test_falling_accuracy_is_declining() -> None:
    history = _replay(ProfileEstimator(), [_event(c) for c in (5, 4, 2)])

    assert history[-1].momentum.state == "declining"
    assert history[-1].momentum.trend < 0


def test_erratic_response_times_raise_load() -> None:
    history = _replay(ProfileEstimator(), [_event(5, response_ms=ms) for ms in (500, 6000, 800)])

    load = history[-1].cognitive_load
    assert load.response_time_variation > 0.9
    assert load.level == "overloaded"


def test_easy_fast_sessions_suggest_challenge() -> None:
    history = _replay(ProfileEstimator(), [_event(5, response_ms=1200) for _ in range(3)])

    final = history[-1]
    assert final.cognitive_load.level == "low"
    assert final.cognitive_load.recommended_action == "challenge"
    assert final.personality.processing_speed == "fast"


def test_perceived_difficulty_lifts_load() -> None:
    events = [
        _event(5, response_ms=1200),
        _event(5, response_ms=1200, self_report={"perceived_difficulty": 0.9}),
    ]
    final = _replay(ProfileEstimator(), events)[-1]

    assert final.cognitive_load.level == "high"
    assert final.cognitive_load.recommended_action == "simplify"


def test_slow_responses_are_deliberate() -> None:
    final = _replay(ProfileEstimator(), [_event(3, response_ms=6500) for _ in range(2)])[-1]

    assert final.personality.processing_speed == "deliberate"


def test_dominant_modality_becomes_learning_style() -> None:
    modalities = ["visual", "visual", "auditory", "visual"]
    final = _replay(ProfileEstimator(), [_event(3, modality=m) for m in modalities])[-1]

    assert final.personality.learning_style == "visual"
    assert final.personality.modality_counts == {"visual": 3, "auditory": 1}


def test_split_modalities_stay_multimodal() -> None:
    modalities = ["visual", "auditory", "kinesthetic", "visual"]
    final = _replay(ProfileEstimator(), [_event(3, modality=m) for m in modalities])[-1]

    assert final.personality.learning_style == "multimodal"


def test_motivation_follows_self_report() -> None:
    estimator = ProfileEstimator()
    profile = estimator.apply(
        new_profile("u1", START),
        [_event(0, self_report={"motivation": 1.0})],
        START,
    )

    assert profile.motivation.current_level == pytest.approx(0.79)
    assert profile.motivation.trend == pytest.approx(0.09)


def test_motivation_without_self_report_uses_performance() -> None:
    profile = ProfileEstimator().apply(new_profile("u1", START), [_event(0, completed=False)], START)

    assert profile.motivation.current_level == pytest.approx(0.49)
    assert profile.motivation.trend < 0


def test_refresh_clears_derived_state_and_caps_confidence() -> None:
    estimator = ProfileEstimator()
    trained = _replay(estimator, [_event(c, modality="visual") for c in (1, 2, 3, 4, 5, 5, 5, 5)])[-1]
    assert trained.metadata.confidence_score > 0.5

    refreshed = estimator.refresh(trained, START + timedelta(days=1))

    assert refreshed.metadata.observation_count == trained.metadata.observation_count
    assert refreshed.metadata.confidence_score == pytest.approx(0.5)
    assert refreshed.momentum.state == "steady"
    assert refreshed.momentum.recent_accuracy == []
    assert refreshed.cognitive_load.recent_error_rates == []
    assert refreshed.personality.modality_counts == {"visual": 8}
    assert refreshed.metadata.created_at == trained.metadata.created_at


def test_config_from_settings_reads_calibration() -> None:
    settings = Settings(LEVELUP_CONFIDENCE_GROWTH=0.5, LEVELUP_MOMENTUM_WINDOW=4)
    config = EstimatorConfig.from_settings(settings)

    assert config.confidence_growth == 0.5
    assert config.momentum_window == 4
    assert ProfileEstimator(config).confidence_curve(1) == pytest.approx(1 / 3)


@pytest.mark.parametrize(
    "overrides",
    [
        {"LEVELUP_LOAD_LOW_ERROR_RATE": 0.5},
        {"LEVELUP_LOAD_HIGH_ERROR_RATE": 0.7},
        {"LEVELUP_LOAD_LOW_VARIATION": 0.8},
        {"LEVELUP_LOAD_OVERLOADED_VARIATION": 0.5},
        {"LEVELUP_FAST_RESPONSE_MS": 5000},
        {"LEVELUP_CONFIDENCE_FLOOR": 0.95},
    ],
)
def test_out_of_order_calibration_is_rejected(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_get_settings_reports_bad_calibration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEVELUP_LOAD_LOW_ERROR_RATE", "0.9")

    with pytest.raises(RuntimeError, match="Invalid backend configuration"):
        get_settings()
