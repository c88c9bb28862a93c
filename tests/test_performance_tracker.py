from __future__ import annotations

import time
from datetime import datetime, timezone

import pytest

from levelup.config import Settings
from levelup.performance_tracker import PerformanceTracker


def _tracker(**kwargs) -> PerformanceTracker:
    tracker = PerformanceTracker(clock=lambda: datetime(2026, 1, 1, tzinfo=timezone.utc), **kwargs)
    tracker.enable()
    return tracker


def test_analyze_empty_buffer_reports_no_data() -> None:
    report = PerformanceTracker().analyze()

    assert report.sample_count == 0
    assert report.has_data is False
    assert report.latency is None
    assert report.operations == []
    assert report.suggestions


def test_tracker_starts_disabled_and_ignores_samples() -> None:
    tracker = PerformanceTracker()

    assert tracker.enabled is False
    assert tracker.record("noop", 12.0) is False
    assert tracker.snapshot() == []


def test_enable_and_disable_are_idempotent() -> None:
    tracker = PerformanceTracker()

    assert tracker.enable() is True
    assert tracker.enable() is False
    assert tracker.disable() is True
    assert tracker.disable() is False


def test_disable_stops_sampling_but_keeps_buffer() -> None:
    tracker = _tracker()
    tracker.record("GET /api/learning-profile/{user_id}", 4.0, category="request")
    tracker.disable()
    tracker.record("GET /api/learning-profile/{user_id}", 9.0, category="request")

    report = tracker.analyze()
    assert report.sample_count == 1
    assert report.enabled is False
    assert report.latency is not None
    assert report.latency.max_ms == 4.0


def test_ring_buffer_evicts_oldest_samples() -> None:
    tracker = _tracker(capacity=3)
    for index in range(5):
        tracker.record(f"op-{index}", float(index))

    assert [sample.name for sample in tracker.snapshot()] == ["op-2", "op-3", "op-4"]
    report = tracker.analyze()
    assert report.evicted == 2
    assert any("evicted" in suggestion for suggestion in report.suggestions)


def test_reset_clears_samples_and_eviction_count() -> None:
    tracker = _tracker(capacity=1)
    tracker.record("a", 1.0)
    tracker.record("b", 1.0)
    tracker.reset()

    assert tracker.snapshot() == []
    assert tracker.analyze().evicted == 0
    assert tracker.enabled is True


def test_report_summarizes_latency_and_histogram() -> None:
    tracker = _tracker()
    for duration in (5.0, 20.0, 20.0, 120.0, 2000.0):
        tracker.record("sql.select learning_profiles", duration, category="db")

    report = tracker.analyze()

    assert report.sample_count == 5
    assert report.total_ms == pytest.approx(2165.0)
    assert report.latency.p50_ms == 20.0
    assert report.latency.p95_ms == 2000.0
    assert report.latency.min_ms == 5.0
    assert report.histogram["<10ms"] == 1
    assert report.histogram["10-50ms"] == 2
    assert report.histogram["100-250ms"] == 1
    assert report.histogram[">=1000ms"] == 1
    assert report.by_category == {"db": 5}
    assert report.operations[0].count == 5


def test_slow_and_frequent_operations_are_hotspots() -> None:
    tracker = _tracker(slow_threshold_ms=50.0, frequency_threshold=0.5)
    for _ in range(18):
        tracker.record("GET /healthz", 1.0, category="request")
    tracker.record("estimator.apply", 80.0, category="calculation")
    tracker.record("estimator.apply", 90.0, category="calculation")

    report = tracker.analyze()
    reasons = {(hotspot.name, hotspot.reason) for hotspot in report.hotspots}

    assert ("estimator.apply", "slow") in reasons
    assert ("GET /healthz", "frequent") in reasons
    assert len(report.suggestions) >= 2


def test_many_storage_statements_suggest_batching() -> None:
    tracker = _tracker()
    for index in range(60):
        tracker.record(f"sql.select table_{index % 4}", 1.0, category="db")

    suggestions = tracker.analyze().suggestions

    assert any("storage operation count" in suggestion for suggestion in suggestions)


def test_measure_and_track_record_durations() -> None:
    tracker = _tracker()

    with tracker.measure("block", category="custom"):
        time.sleep(0.001)
    result = tracker.track("sum", sum, [1, 2, 3])

    samples = tracker.snapshot()
    assert result == 6
    assert [(sample.name, sample.category) for sample in samples] == [("block", "custom"), ("sum", "calculation")]
    assert samples[0].duration_ms > 0


def test_track_while_disabled_only_calls_function() -> None:
    tracker = PerformanceTracker()

    assert tracker.track("len", len, "abc") == 3
    assert tracker.snapshot() == []


def test_from_settings_and_invalid_capacity() -> None:
    tracker = PerformanceTracker.from_settings(Settings(LEVELUP_TRACKER_CAPACITY=5))

    assert tracker.capacity == 5
    with pytest.raises(ValueError):
        PerformanceTracker(capacity=0)
