"""In-process performance tracking for repository and vector operations."""

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field


class OperationRecord(BaseModel):
    operation: str
    duration_seconds: float
    success: bool
    recorded_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class OperationStatistics(BaseModel):
    """Aggregate timings for one operation name."""

    operation: str
    count: int
    success_count: int
    average_seconds: float
    min_seconds: float
    max_seconds: float
    total_seconds: float

    @property
    def success_rate(self) -> float:
        """Percentage of successful runs (0-100)."""
        return 100.0 * self.success_count / self.count if self.count else 0.0


class PerformanceMetrics(BaseModel):
    total_operations: int = 0
    successful_operations: int = 0
    average_seconds: float = 0.0
    total_seconds: float = 0.0
    operations: dict[str, OperationStatistics] = Field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if not self.total_operations:
            return 0.0
        return 100.0 * self.successful_operations / self.total_operations


class RecommendationSeverity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PerformanceRecommendation(BaseModel):
    category: str
    severity: RecommendationSeverity
    message: str
    operation: str | None = None
    suggested_actions: list[str] = Field(default_factory=list)


def _statistics(operation: str, records: list[OperationRecord]) -> OperationStatistics:
    durations = [r.duration_seconds for r in records]
    return OperationStatistics(
        operation=operation,
        count=len(records),
        success_count=sum(1 for r in records if r.success),
        average_seconds=sum(durations) / len(durations),
        min_seconds=min(durations),
        max_seconds=max(durations),
        total_seconds=sum(durations),
    )


class PerformanceMonitor:
    """Thread-safe collector of operation timings.

    Example:
        >>> monitor = PerformanceMonitor()
        >>> with monitor.track("LoadModel", model="sales"):
        ...     pass
        >>> monitor.get_metrics().total_operations
        1
    """

    def __init__(self) -> None:
        self._records: dict[str, list[OperationRecord]] = {}
        self._lock = threading.Lock()

    @contextmanager
    def track(self, operation: str, **metadata: Any) -> Iterator[dict[str, Any]]:
        """Time the enclosed block; it counts as failed if it raises.

        The yielded dict may be updated with extra metadata inside the block.
        """
        if not operation or not operation.strip():
            raise ValueError("operation must not be blank")
        started = time.perf_counter()
        success = False
        try:
            yield metadata
            success = True
        finally:
            self.record_operation(operation, time.perf_counter() - started, success, metadata)

    def record_operation(
        self,
        operation: str,
        duration_seconds: float,
        success: bool,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not operation or not operation.strip():
            raise ValueError("operation must not be blank")
        record = OperationRecord(
            operation=operation,
            duration_seconds=duration_seconds,
            success=success,
            recorded_at=datetime.now(timezone.utc),
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._records.setdefault(operation, []).append(record)
        logger.debug(
            f"Recorded operation {operation}: {duration_seconds * 1000:.1f}ms, success={success}"
        )

    def get_operation_statistics(self, operation: str) -> OperationStatistics | None:
        with self._lock:
            records = list(self._records.get(operation, []))
        return _statistics(operation, records) if records else None

    def get_metrics(self) -> PerformanceMetrics:
        with self._lock:
            snapshot = {name: list(records) for name, records in self._records.items() if records}

        operations = {name: _statistics(name, records) for name, records in snapshot.items()}
        total = sum(s.count for s in operations.values())
        total_seconds = sum(s.total_seconds for s in operations.values())
        return PerformanceMetrics(
            total_operations=total,
            successful_operations=sum(s.success_count for s in operations.values()),
            average_seconds=total_seconds / total if total else 0.0,
            total_seconds=total_seconds,
            operations=operations,
        )

    def get_recommendations(self) -> list[PerformanceRecommendation]:
        """Derive tuning hints from the collected metrics."""
        metrics = self.get_metrics()
        recommendations: list[PerformanceRecommendation] = []

        if metrics.success_rate < 95 and metrics.total_operations > 10:
            recommendations.append(
                PerformanceRecommendation(
                    category="Reliability",
                    severity=RecommendationSeverity.HIGH,
                    message=f"Low success rate detected: {metrics.success_rate:.2f}%",
                    suggested_actions=[
                        "Add retry with exponential backoff for transient failures",
                        "Review error logs for common failure patterns",
                    ],
                )
            )
        if metrics.average_seconds > 5:
            recommendations.append(
                PerformanceRecommendation(
                    category="Performance",
                    severity=RecommendationSeverity.MEDIUM,
                    message=f"High average operation duration: {metrics.average_seconds:.2f}s",
                    suggested_actions=["Raise max_concurrency for bulk vector generation"],
                )
            )

        for stats in metrics.operations.values():
            if stats.success_rate < 90 and stats.count > 5:
                recommendations.append(
                    PerformanceRecommendation(
                        category="Operation Reliability",
                        severity=RecommendationSeverity.MEDIUM,
                        message=f"Operation '{stats.operation}' has low success rate: {stats.success_rate:.2f}%",
                        operation=stats.operation,
                    )
                )
            if stats.average_seconds > 10:
                recommendations.append(
                    PerformanceRecommendation(
                        category="Operation Performance",
                        severity=RecommendationSeverity.MEDIUM,
                        message=f"Operation '{stats.operation}' has high average duration: {stats.average_seconds:.2f}s",
                        operation=stats.operation,
                    )
                )
            if stats.max_seconds > stats.average_seconds * 3 and stats.count > 3:
                recommendations.append(
                    PerformanceRecommendation(
                        category="Performance Consistency",
                        severity=RecommendationSeverity.LOW,
                        message=(
                            f"Operation '{stats.operation}' shows high variance "
                            f"(max: {stats.max_seconds:.2f}s, avg: {stats.average_seconds:.2f}s)"
                        ),
                        operation=stats.operation,
                    )
                )

        if metrics.total_operations > 1000:
            recommendations.append(
                PerformanceRecommendation(
                    category="Resource Management",
                    severity=RecommendationSeverity.INFO,
                    message="High operation volume; consider calling reset() periodically",
                )
            )
        return recommendations

    def reset(self) -> None:
        with self._lock:
            self._records.clear()
        logger.info("Performance metrics reset")
