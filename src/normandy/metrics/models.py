"""Run summary dataclass for normandy."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RunSummary:
    """Aggregate statistics over every result a run collected.

    Latencies cover every collected result, successful or not, matching
    the per-request lines the CLI prints.

    Attributes:
        expected_requests: Number of requests the run was configured to send.
        completed_requests: Number of results collected.
        failed_requests: Results whose transport failed.
        duration_seconds: Wall-clock time from first submit to last result.
        requests_per_second: Completed requests per second of duration.
        latency_avg: Mean latency in milliseconds.
        latency_stddev: Population standard deviation of latency (ms).
        latency_min: Minimum latency in milliseconds.
        latency_max: Maximum latency in milliseconds.
        latency_p50: 50th percentile latency (ms).
        latency_p90: 90th percentile latency (ms).
        latency_p95: 95th percentile latency (ms).
        latency_p99: 99th percentile latency (ms).
        status_counts: Count of responses per HTTP status code.
        errors_by_type: Count of transport failures per exception type.
    """

    expected_requests: int
    completed_requests: int = 0
    failed_requests: int = 0
    duration_seconds: float = 0.0
    requests_per_second: float = 0.0
    latency_avg: float = 0.0
    latency_stddev: float = 0.0
    latency_min: float = 0.0
    latency_max: float = 0.0
    latency_p50: float = 0.0
    latency_p90: float = 0.0
    latency_p95: float = 0.0
    latency_p99: float = 0.0
    status_counts: dict[int, int] = field(default_factory=dict)
    errors_by_type: dict[str, int] = field(default_factory=dict)

    @property
    def missing_requests(self) -> int:
        """Requests that never produced a result (e.g. dropped at shutdown)."""
        return max(0, self.expected_requests - self.completed_requests)

    @property
    def error_rate(self) -> float:
        """Fraction of collected results whose transport failed."""
        if self.completed_requests == 0:
            return 0.0
        return self.failed_requests / self.completed_requests
