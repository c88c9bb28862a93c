"""Opt-in runtime timing tracker with a bounded sample buffer.

The tracker starts disabled. While enabled, timing samples (HTTP requests,
SQL statements, or anything wrapped in :meth:`PerformanceTracker.measure`)
land in a ring buffer; the oldest samples are evicted once ``capacity`` is
reached. Disabling stops sampling but keeps the buffer so the last report
stays available.
"""

from __future__ import annotations

import logging
import math
import statistics
import time
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, Generator, List, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

HISTOGRAM_BOUNDS_MS = (10.0, 50.0, 100.0, 250.0, 500.0, 1000.0)
MIN_SAMPLES_FOR_FREQUENCY = 20
STORAGE_SUGGESTION_COUNT = 50


@dataclass(frozen=True)
class TimingSample:
    name: str
    category: str
    duration_ms: float
    recorded_at: datetime


class LatencySummary(BaseModel):
    mean_ms: float
    p50_ms: float
    p95_ms: float
    min_ms: float
    max_ms: float
    stdev_ms: float


class OperationStats(BaseModel):
    name: str
    category: str
    count: int
    total_ms: float
    mean_ms: float
    p95_ms: float
    max_ms: float


class Hotspot(BaseModel):
    name: str
    reason: Literal["slow", "frequent"]
    detail: str


class PerformanceReport(BaseModel):
    generated_at: datetime
    enabled: bool
    capacity: int
    sample_count: int = 0
    evicted: int = 0
    total_ms: float = 0.0
    latency: Optional[LatencySummary] = None
    by_category: Dict[str, int] = Field(default_factory=dict)
    histogram: Dict[str, int] = Field(default_factory=dict)
    operations: List[OperationStats] = Field(default_factory=list)
    hotspots: List[Hotspot] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.sample_count > 0


def _percentile(ordered: List[float], pct: float) -> float:
    """Nearest-rank percentile over an already sorted list."""
    if not ordered:
        return 0.0
    rank = max(int(math.ceil(pct / 100.0 * len(ordered))), 1)
    return ordered[min(rank, len(ordered)) - 1]


def _bucket_labels() -> List[str]:
    labels = [f"<{HISTOGRAM_BOUNDS_MS[0]:g}ms"]
    for lower, upper in zip(HISTOGRAM_BOUNDS_MS, HISTOGRAM_BOUNDS_MS[1:]):
        labels.append(f"{lower:g}-{upper:g}ms")
    labels.append(f">={HISTOGRAM_BOUNDS_MS[-1]:g}ms")
    return labels


_BUCKET_LABELS = _bucket_labels()


def _bucket_for(duration_ms: float) -> str:
    for index, bound in enumerate(HISTOGRAM_BOUNDS_MS):
        if duration_ms < bound:
            return _BUCKET_LABELS[index]
    return _BUCKET_LABELS[-1]


class PerformanceTracker:
    """Togglable timing collector; one instance per application."""

    def __init__(
        self,
        capacity: int = 2000,
        *,
        slow_threshold_ms: float = 50.0,
        frequency_threshold: float = 0.5,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("Tracker capacity must be at least 1.")
        self._capacity = capacity
        self._slow_threshold_ms = slow_threshold_ms
        self._frequency_threshold = frequency_threshold
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._samples: Deque[TimingSample] = deque(maxlen=capacity)
        self._evicted = 0
        self._enabled = False
        self._lock = Lock()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PerformanceTracker":
        return cls(
            settings.tracker_capacity,
            slow_threshold_ms=settings.tracker_slow_threshold_ms,
            frequency_threshold=settings.tracker_frequency_threshold,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def capacity(self) -> int:
        return self._capacity

    def enable(self) -> bool:
        """Start sampling. Returns ``False`` when tracking was already on."""
        with self._lock:
            if self._enabled:
                return False
            self._enabled = True
        logger.info("Performance tracking enabled (capacity=%d)", self._capacity)
        return True

    def disable(self) -> bool:
        """Stop sampling immediately; collected samples are kept."""
        with self._lock:
            if not self._enabled:
                return False
            self._enabled = False
            retained = len(self._samples)
        logger.info("Performance tracking disabled (%d samples retained)", retained)
        return True

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self._evicted = 0

    def record(self, name: str, duration_ms: float, category: str = "custom") -> bool:
        """Append one timing sample; a no-op while tracking is disabled."""
        if not self._enabled:
            return False
        sample = TimingSample(
            name=name,
            category=category,
            duration_ms=max(float(duration_ms), 0.0),
            recorded_at=self._clock(),
        )
        with self._lock:
            if not self._enabled:
                return False
            if len(self._samples) == self._capacity:
                self._evicted += 1
            self._samples.append(sample)
        if sample.duration_ms >= self._slow_threshold_ms:
            logger.debug("Slow %s operation %s took %.1fms", category, name, sample.duration_ms)
        return True

    @contextmanager
    def measure(self, name: str, category: str = "custom") -> Generator[None, None, None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(name, (time.perf_counter() - start) * 1000.0, category)

    def track(self, name: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``fn`` and record how long it took."""
        if not self._enabled:
            return fn(*args, **kwargs)
        with self.measure(name, "calculation"):
            return fn(*args, **kwargs)

    def snapshot(self) -> List[TimingSample]:
        with self._lock:
            return list(self._samples)

    def analyze(self) -> PerformanceReport:
        """Summarize the current buffer. Never fails, even when it is empty."""
        with self._lock:
            samples = list(self._samples)
            evicted = self._evicted
            enabled = self._enabled

        report = PerformanceReport(
            generated_at=self._clock(),
            enabled=enabled,
            capacity=self._capacity,
            sample_count=len(samples),
            evicted=evicted,
        )
        if not samples:
            report.suggestions.append("No samples collected; enable tracking and exercise the app first.")
            return report

        durations = sorted(sample.duration_ms for sample in samples)
        report.total_ms = math.fsum(durations)
        report.latency = LatencySummary(
            mean_ms=statistics.fmean(durations),
            p50_ms=_percentile(durations, 50),
            p95_ms=_percentile(durations, 95),
            min_ms=durations[0],
            max_ms=durations[-1],
            stdev_ms=statistics.pstdev(durations),
        )
        report.by_category = dict(Counter(sample.category for sample in samples))
        histogram = {label: 0 for label in _BUCKET_LABELS}
        for duration in durations:
            histogram[_bucket_for(duration)] += 1
        report.histogram = histogram

        grouped: Dict[tuple[str, str], List[float]] = {}
        for sample in samples:
            grouped.setdefault((sample.category, sample.name), []).append(sample.duration_ms)
        operations: List[OperationStats] = []
        for (category, name), values in grouped.items():
            ordered = sorted(values)
            operations.append(
                OperationStats(
                    name=name,
                    category=category,
                    count=len(ordered),
                    total_ms=math.fsum(ordered),
                    mean_ms=statistics.fmean(ordered),
                    p95_ms=_percentile(ordered, 95),
                    max_ms=ordered[-1],
                )
            )
        operations.sort(key=lambda op: op.total_ms, reverse=True)
        report.operations = operations
        report.hotspots = self._hotspots(operations, len(samples))
        report.suggestions = self._suggestions(report)
        return report

    def _hotspots(self, operations: List[OperationStats], total: int) -> List[Hotspot]:
        hotspots: List[Hotspot] = []
        for op in operations:
            if op.p95_ms >= self._slow_threshold_ms:
                hotspots.append(
                    Hotspot(
                        name=op.name,
                        reason="slow",
                        detail=f"p95 {op.p95_ms:.1f}ms over {op.count} call(s) exceeds {self._slow_threshold_ms:g}ms",
                    )
                )
            share = op.count / total
            if total >= MIN_SAMPLES_FOR_FREQUENCY and share >= self._frequency_threshold:
                hotspots.append(
                    Hotspot(
                        name=op.name,
                        reason="frequent",
                        detail=f"{op.count} of {total} samples ({share:.0%})",
                    )
                )
        return hotspots

    def _suggestions(self, report: PerformanceReport) -> List[str]:
        suggestions: List[str] = []
        for hotspot in report.hotspots:
            if hotspot.reason == "slow":
                suggestions.append(f"{hotspot.name} is slow ({hotspot.detail}); consider caching or batching it.")
            else:
                suggestions.append(f"{hotspot.name} dominates the samples ({hotspot.detail}); check for repeated calls.")
        if report.by_category.get("db", 0) > STORAGE_SUGGESTION_COUNT:
            suggestions.append("High storage operation count; consider debouncing profile writes or caching reads.")
        if report.evicted:
            suggestions.append(
                f"{report.evicted} sample(s) were evicted; raise LEVELUP_TRACKER_CAPACITY or analyze more often."
            )
        return suggestions


__all__ = [
    "Hotspot",
    "LatencySummary",
    "OperationStats",
    "PerformanceReport",
    "PerformanceTracker",
    "TimingSample",
]
