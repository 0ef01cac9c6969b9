"""Тесты пересчёта статистики надёжности прокси."""
import pytest

from apl_scraper.proxy.reliability import apply_request_outcome, compute_success_rate


class TestComputeSuccessRate:
    def test_zero_total(self) -> None:
        assert compute_success_rate(0, 0) == 0.0

    def test_ratio(self) -> None:
        assert compute_success_rate(3, 4) == 0.75


class TestApplyRequestOutcome:
    """Тесты apply_request_outcome."""

    def test_success_increments_counters(self) -> None:
        stats = apply_request_outcome(
            {"total_requests": 4, "successful_requests": 3, "failed_requests": 1}, True,
        )
        assert stats["total_requests"] == 5
        assert stats["successful_requests"] == 4
        assert stats["failed_requests"] == 1
        assert stats["success_rate"] == pytest.approx(0.8)
        assert stats["last_status"] == "success"
        assert "last_used" in stats

    def test_failure_increments_counters(self) -> None:
        stats = apply_request_outcome({}, False)
        assert stats["total_requests"] == 1
        assert stats["failed_requests"] == 1
        assert stats["success_rate"] == 0.0
        assert stats["last_status"] == "failed"

    def test_success_rate_after_n_requests(self) -> None:
        """После N запросов с K успехами success_rate == K/N."""
        outcomes = [True, False, True, True, False, True, False, True, True, True, False]
        proxy: dict = {}
        for ok in outcomes:
            proxy.update(apply_request_outcome(proxy, ok, disable_min_requests=1000))

        k = sum(outcomes)
        n = len(outcomes)
        assert proxy["total_requests"] == n
        assert proxy["successful_requests"] == k
        assert proxy["success_rate"] == pytest.approx(k / n)

    def test_running_average_response_time(self) -> None:
        """newAvg = (oldAvg × oldTotal + rt) / newTotal."""
        stats = apply_request_outcome(
            {"total_requests": 3, "successful_requests": 3, "response_time_ms": 100.0},
            True,
            response_time_ms=500,
        )
        assert stats["response_time_ms"] == pytest.approx((100 * 3 + 500) / 4)

    def test_response_time_untouched_without_measurement(self) -> None:
        stats = apply_request_outcome({"total_requests": 3, "response_time_ms": 100.0}, False)
        assert "response_time_ms" not in stats

    def test_auto_disable(self) -> None:
        """21 запрос, 1 успех (≈0.048 < 0.1) → следующий апдейт отключает прокси."""
        proxy = {
            "total_requests": 21,
            "successful_requests": 1,
            "failed_requests": 20,
            "success_rate": 1 / 21,
        }
        stats = apply_request_outcome(proxy, False)
        assert stats["status"] == "disabled"

    def test_no_disable_below_min_requests(self) -> None:
        """total ≤ 20 — даже при нулевом success_rate не отключается."""
        proxy = {"total_requests": 19, "successful_requests": 0, "failed_requests": 19}
        stats = apply_request_outcome(proxy, False)
        assert stats["total_requests"] == 20
        assert "status" not in stats

    def test_no_disable_above_threshold(self) -> None:
        proxy = {"total_requests": 30, "successful_requests": 10, "failed_requests": 20}
        stats = apply_request_outcome(proxy, False)
        assert "status" not in stats

    def test_custom_thresholds(self) -> None:
        proxy = {"total_requests": 5, "successful_requests": 1, "failed_requests": 4}
        stats = apply_request_outcome(
            proxy, False, disable_min_requests=5, disable_success_rate=0.5,
        )
        assert stats["status"] == "disabled"
