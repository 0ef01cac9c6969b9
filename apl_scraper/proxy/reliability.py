"""Пересчёт статистики надёжности прокси после одного запроса."""
from datetime import UTC, datetime
from typing import Any


def compute_success_rate(successful: int, total: int) -> float:
    """successful / total, 0 при total=0."""
    if total <= 0:
        return 0.0
    return successful / total


def apply_request_outcome(
    proxy: dict[str, Any],
    success: bool,
    response_time_ms: float | None = None,
    disable_min_requests: int = 20,
    disable_success_rate: float = 0.1,
) -> dict[str, Any]:
    """
    Новые значения счётчиков для строки proxy_list.

    - total/successful/failed инкрементируются
    - success_rate пересчитывается заново из счётчиков
    - response_time_ms — скользящее среднее: (old_avg * old_total + rt) / new_total
    - status='disabled' при total > disable_min_requests и rate < disable_success_rate
      (обратно в active пайплайн не переводит)
    """
    old_total = int(proxy.get("total_requests") or 0)
    total = old_total + 1
    successful = int(proxy.get("successful_requests") or 0) + (1 if success else 0)
    failed = int(proxy.get("failed_requests") or 0) + (0 if success else 1)

    stats: dict[str, Any] = {
        "total_requests": total,
        "successful_requests": successful,
        "failed_requests": failed,
        "success_rate": compute_success_rate(successful, total),
        "last_used": datetime.now(UTC).isoformat(),
        "last_status": "success" if success else "failed",
    }

    if response_time_ms:
        old_avg = float(proxy.get("response_time_ms") or 0)
        stats["response_time_ms"] = (old_avg * old_total + response_time_ms) / total

    if total > disable_min_requests and stats["success_rate"] < disable_success_rate:
        stats["status"] = "disabled"

    return stats
