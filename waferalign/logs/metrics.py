"""Thread-safe collection of timing measurements and their statistics."""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

_MAX_MEASUREMENTS = 10_000
_TRIM_COUNT = 5_000


def _to_seconds(duration: float | timedelta) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


@dataclass
class PerformanceMeasurement:
    """One timed operation."""

    operation: str
    duration_ms: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: uuid.UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "metadata": dict(self.metadata),
        }


@dataclass
class PerformanceStats:
    """Summary statistics of the measurements of one operation."""

    operation: str
    count: int
    mean_ms: float
    median_ms: float
    std_dev_ms: float
    min_ms: float
    max_ms: float
    p95_ms: float
    p99_ms: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AlgorithmMetrics:
    """Aggregated execution metrics of one algorithm."""

    algorithm_name: str
    total_executions: int
    successful_executions: int
    mean_execution_time_ms: float
    mean_confidence: float
    feature_detection_stats: PerformanceStats | None
    matching_stats: PerformanceStats | None
    ransac_stats: PerformanceStats | None
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MetricsCollector:
    """Stores performance measurements, keeping at most the most recent ten thousand."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._lock = threading.Lock()
        self._measurements: list[PerformanceMeasurement] = []

    def record(
        self,
        operation: str,
        duration: float | timedelta,
        correlation_id: uuid.UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record a measurement; ``duration`` is in seconds or a timedelta."""
        if not self.enabled:
            return
        measurement = PerformanceMeasurement(
            operation=operation,
            duration_ms=_to_seconds(duration) * 1000.0,
            correlation_id=correlation_id,
            metadata=dict(metadata) if metadata else {},
        )
        with self._lock:
            self._measurements.append(measurement)
            if len(self._measurements) > _MAX_MEASUREMENTS:
                del self._measurements[:_TRIM_COUNT]

    def all_measurements(self) -> list[PerformanceMeasurement]:
        with self._lock:
            return list(self._measurements)

    def get_measurements(self, operation: str) -> list[PerformanceMeasurement]:
        with self._lock:
            return [m for m in self._measurements if m.operation == operation]

    def get_measurements_by_correlation(
        self, correlation_id: uuid.UUID
    ) -> list[PerformanceMeasurement]:
        with self._lock:
            return [m for m in self._measurements if m.correlation_id == correlation_id]

    def calculate_stats(self, operation: str) -> PerformanceStats | None:
        """Return statistics for an operation, or None if it has no measurements."""
        durations = sorted(m.duration_ms for m in self.get_measurements(operation))
        if not durations:
            return None

        count = len(durations)
        mean = sum(durations) / count
        variance = sum((d - mean) ** 2 for d in durations) / count
        middle = count // 2
        if count % 2 == 0:
            median = (durations[middle - 1] + durations[middle]) / 2.0
        else:
            median = durations[middle]
        p95 = durations[min(int(count * 0.95), count - 1)]
        p99 = durations[min(int(count * 0.99), count - 1)]

        return PerformanceStats(
            operation=operation,
            count=count,
            mean_ms=mean,
            median_ms=median,
            std_dev_ms=variance**0.5,
            min_ms=durations[0],
            max_ms=durations[-1],
            p95_ms=p95,
            p99_ms=p99,
        )

    def get_algorithm_metrics(self, algorithm_name: str) -> AlgorithmMetrics | None:
        """Aggregate the ``<name>_execution`` measurements and per-stage statistics."""
        executions = self.get_measurements(f"{algorithm_name}_execution")
        if not executions:
            return None

        total = len(executions)
        successful = sum(
            1
            for m in executions
            if not isinstance(m.metadata.get("success"), bool) or m.metadata["success"]
        )
        mean_time = sum(m.duration_ms for m in executions) / total
        confidences = (
            m.metadata.get("confidence")
            for m in executions
        )
        confidence_sum = sum(
            float(c)
            for c in confidences
            if isinstance(c, (int, float)) and not isinstance(c, bool)
        )

        return AlgorithmMetrics(
            algorithm_name=algorithm_name,
            total_executions=total,
            successful_executions=successful,
            mean_execution_time_ms=mean_time,
            mean_confidence=confidence_sum / total,
            feature_detection_stats=self.calculate_stats(f"{algorithm_name}_feature_detection"),
            matching_stats=self.calculate_stats(f"{algorithm_name}_matching"),
            ransac_stats=self.calculate_stats(f"{algorithm_name}_ransac"),
        )

    def clear(self) -> None:
        with self._lock:
            self._measurements.clear()

    def measurement_count(self) -> int:
        with self._lock:
            return len(self._measurements)

    def export_to_json(self) -> str:
        """Return all measurements as pretty-printed JSON."""
        return json.dumps([m.to_dict() for m in self.all_measurements()], indent=2)


class Timer:
    """Measures elapsed time and records it into an optional collector on stop."""

    def __init__(
        self,
        operation: str,
        correlation_id: uuid.UUID | None = None,
        collector: MetricsCollector | None = None,
    ) -> None:
        self.operation = operation
        self.correlation_id = correlation_id
        self.collector = collector
        self.metadata: dict[str, Any] = {}
        self._start = time.perf_counter()
        self._elapsed: float | None = None

    def with_metadata(self, key: str, value: Any) -> Timer:
        self.metadata[key] = value
        return self

    def stop(self) -> float:
        """Stop the timer, record the measurement and return the elapsed seconds."""
        if self._elapsed is not None:
            return self._elapsed
        elapsed = time.perf_counter() - self._start
        self._elapsed = elapsed
        if self.collector is not None:
            self.collector.record(
                self.operation, elapsed, self.correlation_id, self.metadata or None
            )
        logger.debug(
            "Timer completed: operation=%s duration_ms=%d correlation_id=%s",
            self.operation,
            int(elapsed * 1000),
            self.correlation_id,
        )
        return elapsed

    def __enter__(self) -> Timer:
        self._start = time.perf_counter()
        self._elapsed = None
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


_GLOBAL_METRICS = MetricsCollector(True)


def global_metrics() -> MetricsCollector:
    """Return the process-wide metrics collector."""
    return _GLOBAL_METRICS