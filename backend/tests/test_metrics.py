"""
Tests for the Metrics Calculator.

Covers:
  - p95 index selection
  - Error / approval rates over recent and baseline windows
  - Empty windows
"""

from dataclasses import dataclass

from prediction.metrics import calculate_metrics, p95


@dataclass
class Tx:
    status: str
    latency_ms: int | None = 100


class TestP95:
    def test_twenty_values_picks_nineteenth(self):
        # ceil(0.95 * 20) - 1 = 18 -> 19th smallest
        assert p95(range(1, 21)) == 19

    def test_unsorted_input(self):
        assert p95([500, 100, 300, 200, 400]) == 500

    def test_single_value(self):
        assert p95([42]) == 42

    def test_ten_latencies(self):
        # ceil(0.95 * 10) - 1 = ceil(9.5) - 1 = 9 -> the largest value
        assert p95(range(100, 1001, 100)) == 1000

    def test_hundred_values(self):
        assert p95(range(1, 101)) == 95

    def test_empty_is_zero(self):
        assert p95([]) == 0


class TestCalculateMetrics:
    def test_rates(self):
        recent = [Tx("approved")] * 6 + [Tx("declined")] * 2 + [Tx("error"), Tx("timeout")]
        metrics = calculate_metrics(recent, [])
        assert metrics.sample_size == 10
        assert metrics.error_rate == 0.2
        assert metrics.approval_rate == 0.6
        assert metrics.recent_error_rate == metrics.error_rate

    def test_declines_are_not_errors(self):
        metrics = calculate_metrics([Tx("declined")] * 4, [])
        assert metrics.error_rate == 0.0
        assert metrics.approval_rate == 0.0

    def test_baseline_error_rate(self):
        baseline = [Tx("approved")] * 3 + [Tx("error")]
        metrics = calculate_metrics([Tx("approved")], baseline)
        assert metrics.baseline_error_rate == 0.25

    def test_missing_latency_counts_as_zero(self):
        recent = [Tx("approved", None)] * 19 + [Tx("approved", 1000)]
        assert calculate_metrics(recent, []).p95_latency == 0

    def test_empty_windows(self):
        metrics = calculate_metrics([], [])
        assert metrics.sample_size == 0
        assert metrics.error_rate == 0.0
        assert metrics.approval_rate == 0.0
        assert metrics.p95_latency == 0
        assert metrics.baseline_error_rate == 0.0
