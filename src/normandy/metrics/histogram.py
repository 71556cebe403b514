"""Latency percentiles backed by an HDR histogram.

The ``hdrh`` histogram only stores integers, so latencies are recorded
as whole microseconds and reported back in milliseconds.
"""

from __future__ import annotations

from hdrh.histogram import HdrHistogram  # type: ignore[import-untyped]

# 1 microsecond to 1 hour; requests have no timeout by default.
_LOWEST_TRACKABLE_US = 1
_HIGHEST_TRACKABLE_US = 3_600_000_000
_SIGNIFICANT_DIGITS = 3


class LatencyHistogram:
    """Millisecond latency histogram.

    Values outside the trackable range are clamped to it rather than
    rejected, so a pathological request still counts.
    """

    def __init__(self, significant_digits: int = _SIGNIFICANT_DIGITS) -> None:
        self._histogram: HdrHistogram = HdrHistogram(  # type: ignore[no-any-unimported]
            _LOWEST_TRACKABLE_US, _HIGHEST_TRACKABLE_US, significant_digits
        )

    def __len__(self) -> int:
        return int(self._histogram.total_count)

    def record(self, latency_ms: float) -> None:
        """Record one latency in milliseconds."""
        value_us = int(latency_ms * 1000)
        value_us = max(_LOWEST_TRACKABLE_US, min(value_us, _HIGHEST_TRACKABLE_US))
        self._histogram.record_value(value_us)

    def percentile(self, percentile: float) -> float:
        """Return the latency at ``percentile`` (0-100) in ms, 0.0 when empty."""
        if self._histogram.total_count == 0:
            return 0.0
        return float(self._histogram.get_value_at_percentile(percentile)) / 1000.0

    def percentiles(self, *percentiles: float) -> dict[float, float]:
        """Return several percentiles at once, keyed by percentile."""
        return {p: self.percentile(p) for p in percentiles}
