"""Collection of request results and computation of the run summary."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

import numpy as np

from normandy.metrics.histogram import LatencyHistogram
from normandy.metrics.models import RunSummary

if TYPE_CHECKING:
    from normandy.engine.protocol import RequestResult


def _error_type(error: str) -> str:
    """Extract the exception name from a ``"Type: message"`` error string."""
    name, sep, _ = error.partition(":")
    return name if sep else error


class ResultCollector:
    """Accumulates RequestResult objects for the final summary.

    ``record`` is meant to be called by the dispatch driver for every
    result it receives, in completion order.
    """

    def __init__(self) -> None:
        self._latencies: list[float] = []
        self._histogram = LatencyHistogram()
        self._status_counts: Counter[int] = Counter()
        self._error_counts: Counter[str] = Counter()

    def __len__(self) -> int:
        return len(self._latencies)

    @property
    def latencies(self) -> list[float]:
        """Latencies recorded so far, in milliseconds."""
        return list(self._latencies)

    def record(self, result: RequestResult) -> None:
        """Add one result."""
        self._latencies.append(result.latency_ms)
        self._histogram.record(result.latency_ms)
        if result.error is not None:
            self._error_counts[_error_type(result.error)] += 1
        elif result.status_code is not None:
            self._status_counts[result.status_code] += 1

    def summary(self, expected_requests: int, duration_seconds: float) -> RunSummary:
        """Compute the aggregate statistics.

        Args:
            expected_requests: Number of requests the run meant to send.
            duration_seconds: Wall-clock duration of the run.

        Returns:
            The RunSummary. Latency fields are 0.0 when nothing was recorded.
        """
        completed = len(self._latencies)
        summary = RunSummary(
            expected_requests=expected_requests,
            completed_requests=completed,
            failed_requests=sum(self._error_counts.values()),
            duration_seconds=duration_seconds,
            requests_per_second=completed / duration_seconds if duration_seconds > 0 else 0.0,
            status_counts=dict(sorted(self._status_counts.items())),
            errors_by_type=dict(self._error_counts.most_common()),
        )
        if not completed:
            return summary

        arr = np.array(self._latencies, dtype=np.float64)
        summary.latency_avg = float(np.mean(arr))
        summary.latency_stddev = float(np.std(arr))
        summary.latency_min = float(np.min(arr))
        summary.latency_max = float(np.max(arr))

        p50, p90, p95, p99 = self._histogram.percentiles(50.0, 90.0, 95.0, 99.0).values()
        summary.latency_p50 = p50
        summary.latency_p90 = p90
        summary.latency_p95 = p95
        summary.latency_p99 = p99
        return summary
