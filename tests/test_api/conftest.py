"""Общие фикстуры и хелперы для тестов API."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.conftest import make_settings

STATS = {"waiting": 3, "active": 1, "completed": 10, "failed": 2, "total": 16, "paused": False}


@pytest.fixture(autouse=True)
def _reset_rate_limit():
    """Sliding window хранится на уровне модуля — чистим между тестами."""
    from apl_scraper.api.app import _rate_limit_store

    _rate_limit_store.clear()
    yield
    _rate_limit_store.clear()


def make_queue(stats: dict | None = None):
    """Создать мок JobQueue."""
    queue = MagicMock()
    queue.is_paused = False
    queue.stats = AsyncMock(return_value=dict(stats or STATS))
    queue.enqueue = AsyncMock(return_value="q-1")
    queue.enqueue_bulk = AsyncMock(return_value=[])
    queue.pause = AsyncMock()
    queue.resume = AsyncMock()
    queue.clear = AsyncMock(return_value=0)
    queue.retry_failed = AsyncMock(return_value=0)
    return queue


def make_proxy_manager(available: int = 2):
    """Создать мок ProxyManager."""
    manager = MagicMock()
    manager.available_count.return_value = available
    manager.refresh = AsyncMock(return_value=available)
    manager.stats = AsyncMock(return_value={
        "total": 3, "active": 3, "disabled": 0, "failed": 1, "available": 2,
        "avg_success_rate": 0.9, "avg_response_time": 420.0,
        "by_country": {"US": 3}, "by_type": {"http": 3},
    })
    return manager


def make_app(queue=None, proxy_manager=None, browser_pool=None, settings=None, proxies=True):
    """Создать FastAPI app с моками."""
    from apl_scraper.api.app import create_app

    if proxy_manager is None and proxies:
        proxy_manager = make_proxy_manager()
    if browser_pool is None:
        browser_pool = MagicMock(is_running=True)
    return create_app(
        queue=queue or make_queue(),
        proxy_manager=proxy_manager,
        browser_pool=browser_pool,
        settings=settings or make_settings(),
    )


# Общий заголовок авторизации
AUTH_HEADERS = {"Authorization": "Bearer sk-test-key"}

JOB_ID = "2b0f8c1e-3f0a-4c55-9a52-0d4b1f8e6a11"
