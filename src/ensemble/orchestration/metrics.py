"""
ensemble.orchestration.metrics - Metrics and Log Sinks
========================================================

The status event pipeline reports every transition to an injected sink
through two calls:

    track_metric(metric: MetricEvent)        → record a measurement
    log(message, context, level="info")      → record a human-readable line

Ensemble only defines this call shape. Storage and formatting belong to the
host application.

Implementations:
    - MetricsSink (ABC):        Abstract interface
    - StructlogMetricsSink:     Forwards both calls to structlog
    - InMemoryMetricsSink:      Keeps metrics and log lines in lists, for
                                workflow stats and for tests
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Optional

import structlog

from ensemble.core.enums import MetricType
from ensemble.core.events import MetricEvent

logger = structlog.get_logger()


class MetricsSink(ABC):
    """Abstract destination for pipeline metrics and log lines."""

    @abstractmethod
    def track_metric(self, metric: MetricEvent) -> None:
        """Record one measurement."""

    @abstractmethod
    def log(self, message: str, context: Optional[dict[str, Any]] = None, level: str = "info") -> None:
        """Record one log line with structured context."""

    def metric_counts(self) -> dict[str, int]:
        """Metrics recorded so far, per MetricType value. Empty when not tracked."""
        return {}


class StructlogMetricsSink(MetricsSink):
    """Forwards metrics and log lines to structlog without keeping them."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="metrics")

    def track_metric(self, metric: MetricEvent) -> None:
        self._logger.debug(
            "metric_tracked",
            metric_type=metric.type.value,
            value=metric.value,
            **metric.metadata,
        )

    def log(self, message: str, context: Optional[dict[str, Any]] = None, level: str = "info") -> None:
        getattr(self._logger, level)(message, **(context or {}))


class InMemoryMetricsSink(StructlogMetricsSink):
    """Keeps every metric and log line in memory as well as logging it.

    Example:
        >>> sink = InMemoryMetricsSink()
        >>> pipeline = StatusEventPipeline(validator, metrics=sink)
        >>> await pipeline.emit_transition(context)
        >>> sink.count(MetricType.PERFORMANCE)
        2
    """

    def __init__(self) -> None:
        super().__init__()
        self.metrics: list[MetricEvent] = []
        self.logs: list[tuple[str, str, dict[str, Any]]] = []

    def track_metric(self, metric: MetricEvent) -> None:
        self.metrics.append(metric)
        super().track_metric(metric)

    def log(self, message: str, context: Optional[dict[str, Any]] = None, level: str = "info") -> None:
        self.logs.append((level, message, dict(context or {})))
        super().log(message, context, level)

    def count(self, metric_type: Optional[MetricType] = None) -> int:
        """Number of recorded metrics, optionally of one type."""
        if metric_type is None:
            return len(self.metrics)
        return sum(1 for metric in self.metrics if metric.type == metric_type)

    def metric_counts(self) -> dict[str, int]:
        return dict(Counter(metric.type.value for metric in self.metrics))

    def clear(self) -> None:
        self.metrics.clear()
        self.logs.clear()
