"""Folds learning events into a profile.

The estimator is pure and synchronous: every call returns a new profile and
leaves its input untouched. All calibration constants come from
:class:`EstimatorConfig`, which mirrors the ``LEVELUP_*`` settings.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Sequence

from .learning_profile import (
    CognitiveLoad,
    CognitiveLoadLevel,
    LearningEvent,
    LearningMomentum,
    LearningProfile,
    LearningStyle,
    MomentumState,
    MotivationProfile,
    ProcessingSpeed,
    RecommendedAction,
    _as_utc,
    _now,
    parse_event,
)

if TYPE_CHECKING:
    from .config import Settings


_ACTIONS: Dict[CognitiveLoadLevel, RecommendedAction] = {
    "low": "challenge",
    "optimal": "continue",
    "high": "simplify",
    "overloaded": "break",
}
_HIGH_PERCEIVED_DIFFICULTY = 0.8


@dataclass(frozen=True)
class EstimatorConfig:
    confidence_growth: float = 0.25
    confidence_cap: float = 0.95
    confidence_floor: float = 0.3
    refresh_confidence: float = 0.5
    staleness_window_hours: float = 72.0
    confidence_half_life_hours: float = 168.0
    min_events_for_inference: int = 2
    momentum_window: int = 5
    momentum_flat_threshold: float = 0.03
    momentum_stall_after: int = 3
    load_window: int = 3
    load_overloaded_error_rate: float = 0.6
    load_high_error_rate: float = 0.4
    load_low_error_rate: float = 0.1
    load_overloaded_variation: float = 0.9
    load_high_variation: float = 0.6
    load_low_variation: float = 0.25
    fast_response_ms: float = 2000.0
    moderate_response_ms: float = 4000.0
    motivation_smoothing: float = 0.3

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EstimatorConfig":
        return cls(
            confidence_growth=settings.confidence_growth,
            confidence_cap=settings.confidence_cap,
            confidence_floor=settings.confidence_floor,
            refresh_confidence=settings.refresh_confidence,
            staleness_window_hours=settings.staleness_window_hours,
            confidence_half_life_hours=settings.confidence_half_life_hours,
            min_events_for_inference=settings.min_events_for_inference,
            momentum_window=settings.momentum_window,
            momentum_flat_threshold=settings.momentum_flat_threshold,
            momentum_stall_after=settings.momentum_stall_after,
            load_window=settings.load_window,
            load_overloaded_error_rate=settings.load_overloaded_error_rate,
            load_high_error_rate=settings.load_high_error_rate,
            load_low_error_rate=settings.load_low_error_rate,
            load_overloaded_variation=settings.load_overloaded_variation,
            load_high_variation=settings.load_high_variation,
            load_low_variation=settings.load_low_variation,
            fast_response_ms=settings.fast_response_ms,
            moderate_response_ms=settings.moderate_response_ms,
            motivation_smoothing=settings.motivation_smoothing,
        )


def _clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))


def _slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    count = len(values)
    if count < 2:
        return 0.0
    x_mean = (count - 1) / 2.0
    y_mean = math.fsum(values) / count
    numerator = math.fsum((index - x_mean) * (value - y_mean) for index, value in enumerate(values))
    denominator = math.fsum((index - x_mean) ** 2 for index in range(count))
    return numerator / denominator


def _variation(values: Sequence[float]) -> float:
    """Coefficient of variation; zero until there are two finite samples."""
    if len(values) < 2 or not all(math.isfinite(value) for value in values):
        return 0.0
    mean = statistics.fmean(values)
    if mean <= 0:
        return 0.0
    return statistics.pstdev(values) / mean


class ProfileEstimator:
    def __init__(self, config: Optional[EstimatorConfig] = None) -> None:
        self.config = config or EstimatorConfig()

    def confidence_curve(self, observations: int) -> float:
        if observations <= 0:
            return 0.0
        return 1.0 - 1.0 / (1.0 + self.config.confidence_growth * observations)

    def decayed_confidence(self, confidence: float, last_updated: datetime, now: datetime) -> float:
        """Staleness decay toward the floor; values at or below the floor are left alone."""
        cfg = self.config
        if confidence <= cfg.confidence_floor:
            return confidence
        idle_hours = (_as_utc(now) - _as_utc(last_updated)).total_seconds() / 3600.0
        overdue = idle_hours - cfg.staleness_window_hours
        if overdue <= 0:
            return confidence
        factor = 0.5 ** (overdue / cfg.confidence_half_life_hours)
        return cfg.confidence_floor + (confidence - cfg.confidence_floor) * factor

    def decay(self, profile: LearningProfile, now: Optional[datetime] = None) -> LearningProfile:
        """Return the staleness-adjusted view of ``profile`` without recording anything."""
        moment = _as_utc(now) if now is not None else _now()
        updated = profile.model_copy(deep=True)
        meta = updated.metadata
        meta.confidence_score = self.decayed_confidence(meta.confidence_score, meta.last_updated, moment)
        return updated

    def apply(
        self,
        profile: LearningProfile,
        events: Iterable[Any],
        now: Optional[datetime] = None,
    ) -> LearningProfile:
        """Fold ``events`` into a copy of ``profile``.

        Every event is validated up front, so an invalid one leaves the
        result unchanged: no observation counted, no confidence credited.
        A batch is folded in ``occurred_at`` order; ties keep their position.
        """
        parsed = sorted((parse_event(raw) for raw in events), key=lambda event: event.occurred_at)
        moment = _as_utc(now) if now is not None else _now()
        if not parsed:
            return profile.model_copy(deep=True)

        updated = self.decay(profile, moment)
        for event in parsed:
            self._fold(updated, event)
        updated.metadata.last_updated = moment
        return updated

    def refresh(self, profile: LearningProfile, now: Optional[datetime] = None) -> LearningProfile:
        """Drop derived state while keeping the observation count and modality evidence."""
        moment = _as_utc(now) if now is not None else _now()
        refreshed = profile.model_copy(deep=True)
        refreshed.personality.processing_speed = "moderate"
        refreshed.momentum = LearningMomentum()
        refreshed.cognitive_load = CognitiveLoad()
        refreshed.motivation = MotivationProfile()
        meta = refreshed.metadata
        meta.confidence_score = min(meta.confidence_score, self.config.refresh_confidence)
        meta.last_updated = moment
        return refreshed

    def _fold(self, profile: LearningProfile, event: LearningEvent) -> None:
        cfg = self.config
        meta = profile.metadata
        previous = meta.observation_count
        meta.observation_count = previous + 1
        gain = self.confidence_curve(meta.observation_count) - self.confidence_curve(previous)
        meta.confidence_score = _clamp(meta.confidence_score + gain, upper=cfg.confidence_cap)

        infer = meta.observation_count >= cfg.min_events_for_inference
        self._update_load(profile, event, infer)
        self._update_personality(profile, event, infer)
        self._update_momentum(profile, event, infer)
        self._update_motivation(profile, event)

    def _update_personality(self, profile: LearningProfile, event: LearningEvent, infer: bool) -> None:
        personality = profile.personality
        if event.modality is not None and event.modality != "multimodal":
            personality.modality_counts[event.modality] = personality.modality_counts.get(event.modality, 0) + 1
        if not infer:
            return
        personality.learning_style = self._dominant_style(personality.modality_counts)
        personality.processing_speed = self._speed(profile.cognitive_load.response_time_mean_ms)

    def _dominant_style(self, counts: Dict[LearningStyle, int]) -> LearningStyle:
        tagged = sum(counts.values())
        if tagged == 0:
            return "multimodal"
        style, count = max(counts.items(), key=lambda item: item[1])
        return style if count * 2 > tagged else "multimodal"

    def _speed(self, mean: float) -> ProcessingSpeed:
        if mean < self.config.fast_response_ms:
            return "fast"
        if mean < self.config.moderate_response_ms:
            return "moderate"
        return "deliberate"

    def _update_momentum(self, profile: LearningProfile, event: LearningEvent, infer: bool) -> None:
        cfg = self.config
        momentum = profile.momentum
        momentum.recent_accuracy = (momentum.recent_accuracy + [event.accuracy])[-cfg.momentum_window:]
        if not infer or len(momentum.recent_accuracy) < 2:
            return
        slope = _slope(momentum.recent_accuracy)
        momentum.trend = slope
        state: MomentumState
        if slope > cfg.momentum_flat_threshold:
            state = "building"
            momentum.flat_streak = 0
        elif slope < -cfg.momentum_flat_threshold:
            state = "declining"
            momentum.flat_streak = 0
        else:
            momentum.flat_streak += 1
            state = "stalled" if momentum.flat_streak >= cfg.momentum_stall_after else "steady"
        momentum.state = state

    def _update_load(self, profile: LearningProfile, event: LearningEvent, infer: bool) -> None:
        cfg = self.config
        load = profile.cognitive_load
        load.recent_error_rates = (load.recent_error_rates + [event.error_rate])[-cfg.load_window:]
        load.recent_response_ms = (load.recent_response_ms + [event.mean_response_ms])[-cfg.load_window:]
        load.error_rate = _clamp(statistics.fmean(load.recent_error_rates))
        load.response_time_mean_ms = statistics.fmean(load.recent_response_ms)
        load.response_time_variation = _variation(load.recent_response_ms)
        if not infer:
            return

        level = self._classify_load(load.error_rate, load.response_time_variation)
        report = event.self_report
        if (
            report is not None
            and report.perceived_difficulty is not None
            and report.perceived_difficulty >= _HIGH_PERCEIVED_DIFFICULTY
            and level in ("low", "optimal")
        ):
            level = "high"
        load.level = level
        load.recommended_action = _ACTIONS[level]

    def _classify_load(self, error_rate: float, variation: float) -> CognitiveLoadLevel:
        cfg = self.config
        if error_rate > cfg.load_overloaded_error_rate or variation > cfg.load_overloaded_variation:
            return "overloaded"
        if error_rate > cfg.load_high_error_rate or variation > cfg.load_high_variation:
            return "high"
        if error_rate < cfg.load_low_error_rate and variation < cfg.load_low_variation:
            return "low"
        return "optimal"

    def _update_motivation(self, profile: LearningProfile, event: LearningEvent) -> None:
        motivation = profile.motivation
        reported = event.self_report.motivation if event.self_report is not None else None
        if reported is not None:
            target = reported
        else:
            target = (event.accuracy + (1.0 if event.completed else 0.0)) / 2.0
        alpha = self.config.motivation_smoothing
        previous = motivation.current_level
        current = _clamp(previous + alpha * (target - previous))
        motivation.current_level = current
        motivation.trend = _clamp(current - previous, -1.0, 1.0)


__all__ = ["EstimatorConfig", "ProfileEstimator"]
