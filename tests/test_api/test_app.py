"""Тесты FastAPI-приложения: auth, health, очередь, прокси."""
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from apl_scraper.worker.queue import QueueClosedError
from tests.test_api.conftest import (
    AUTH_HEADERS,
    JOB_ID,
    make_app,
    make_proxy_manager,
    make_queue,
)


class TestHealth:
    """GET /api/health — без авторизации."""

    def test_health_no_auth_required(self) -> None:
        client = TestClient(make_app())
        resp = client.get("/api/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["jobs_waiting"] == 3
        assert data["jobs_active"] == 1
        assert data["proxies_available"] == 2
        assert data["browser_running"] is True

    def test_health_without_proxies(self) -> None:
        client = TestClient(make_app(proxies=False))

        assert client.get("/api/health").json()["proxies_available"] == 0

    def test_health_db_error_returns_503(self) -> None:
        """При ошибке БД — статус degraded и HTTP 503."""
        stats = {"waiting": 0, "active": 0, "completed": 0, "failed": 0, "total": 0, "error": "DB down"}
        client = TestClient(make_app(queue=make_queue(stats)))
        resp = client.get("/api/health")

        assert resp.status_code == 503
        assert resp.json()["status"] == "degraded"


class TestAuth:
    """Авторизация по API key."""

    def test_missing_auth_returns_401(self) -> None:
        client = TestClient(make_app())
        assert client.get("/api/queue/stats").status_code == 401

    def test_wrong_key_returns_401(self) -> None:
        client = TestClient(make_app())
        resp = client.get("/api/queue/stats", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    def test_valid_key_passes(self) -> None:
        client = TestClient(make_app())
        assert client.get("/api/queue/stats", headers=AUTH_HEADERS).status_code == 200


class TestRateLimit:
    def test_limit_exceeded_returns_429(self) -> None:
        client = TestClient(make_app())

        with patch("apl_scraper.api.app.RATE_LIMIT_MAX_REQUESTS", 3):
            codes = [
                client.get("/api/queue/stats", headers=AUTH_HEADERS).status_code
                for _ in range(4)
            ]

        assert codes == [200, 200, 200, 429]


class TestQueueRoutes:
    """Тесты /api/queue/*."""

    def test_stats(self) -> None:
        client = TestClient(make_app())
        resp = client.get("/api/queue/stats", headers=AUTH_HEADERS)

        assert resp.json()["total"] == 16

    def test_enqueue(self) -> None:
        queue = make_queue()
        client = TestClient(make_app(queue=queue))

        resp = client.post(
            "/api/queue/jobs", json={"job_id": JOB_ID, "priority": 5}, headers=AUTH_HEADERS,
        )

        assert resp.status_code == 201
        assert resp.json() == {"job_id": JOB_ID, "queue_item_id": "q-1", "status": "queued"}
        queue.enqueue.assert_awaited_once_with(JOB_ID, 5, 0)

    def test_enqueue_duplicate(self) -> None:
        queue = make_queue()
        queue.enqueue = AsyncMock(return_value=None)
        client = TestClient(make_app(queue=queue))

        resp = client.post("/api/queue/jobs", json={"job_id": JOB_ID}, headers=AUTH_HEADERS)

        assert resp.json()["status"] == "duplicate"
        assert resp.json()["queue_item_id"] is None

    def test_enqueue_invalid_uuid(self) -> None:
        client = TestClient(make_app())

        resp = client.post("/api/queue/jobs", json={"job_id": "not-a-uuid"}, headers=AUTH_HEADERS)

        assert resp.status_code == 422

    def test_enqueue_negative_priority(self) -> None:
        client = TestClient(make_app())

        resp = client.post(
            "/api/queue/jobs", json={"job_id": JOB_ID, "priority": -1}, headers=AUTH_HEADERS,
        )

        assert resp.status_code == 422

    def test_enqueue_closed_queue(self) -> None:
        queue = make_queue()
        queue.enqueue = AsyncMock(side_effect=QueueClosedError("Queue is closed"))
        client = TestClient(make_app(queue=queue))

        resp = client.post("/api/queue/jobs", json={"job_id": JOB_ID}, headers=AUTH_HEADERS)

        assert resp.status_code == 503

    def test_enqueue_bulk(self) -> None:
        other = "7d1c2a44-6a55-4e0e-8f0b-1e9c0d2b3a44"
        queue = make_queue()
        queue.enqueue_bulk = AsyncMock(return_value=["q-1", None])
        client = TestClient(make_app(queue=queue))

        resp = client.post(
            "/api/queue/jobs/bulk",
            json={"jobs": [{"id": JOB_ID, "priority": 2}, {"id": other}]},
            headers=AUTH_HEADERS,
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["queued"] == 1
        assert data["duplicates"] == 1
        assert [j["status"] for j in data["jobs"]] == ["queued", "duplicate"]
        queue.enqueue_bulk.assert_awaited_once_with([
            {"id": JOB_ID, "priority": 2},
            {"id": other, "priority": 0},
        ])

    def test_enqueue_bulk_empty_rejected(self) -> None:
        client = TestClient(make_app())

        resp = client.post("/api/queue/jobs/bulk", json={"jobs": []}, headers=AUTH_HEADERS)

        assert resp.status_code == 422

    def test_pause_and_resume(self) -> None:
        queue = make_queue()
        client = TestClient(make_app(queue=queue))

        assert client.post("/api/queue/pause", headers=AUTH_HEADERS).json() == {
            "status": "paused", "count": None,
        }
        assert client.post("/api/queue/resume", headers=AUTH_HEADERS).json()["status"] == "resumed"
        queue.pause.assert_awaited_once()
        queue.resume.assert_awaited_once()

    def test_clear(self) -> None:
        queue = make_queue()
        queue.clear = AsyncMock(return_value=12)
        client = TestClient(make_app(queue=queue))

        resp = client.post("/api/queue/clear", headers=AUTH_HEADERS)

        assert resp.json() == {"status": "cleared", "count": 12}

    def test_clear_error_returns_500(self) -> None:
        queue = make_queue()
        queue.clear = AsyncMock(side_effect=Exception("DB down"))
        client = TestClient(make_app(queue=queue))

        assert client.post("/api/queue/clear", headers=AUTH_HEADERS).status_code == 500

    def test_retry_failed(self) -> None:
        queue = make_queue()
        queue.retry_failed = AsyncMock(return_value=4)
        client = TestClient(make_app(queue=queue))

        resp = client.post("/api/queue/retry-failed", headers=AUTH_HEADERS)

        assert resp.json() == {"status": "retried", "count": 4}


class TestProxyRoutes:
    """Тесты /api/proxies/*."""

    def test_stats(self) -> None:
        client = TestClient(make_app())

        resp = client.get("/api/proxies/stats", headers=AUTH_HEADERS)

        assert resp.status_code == 200
        assert resp.json()["avg_success_rate"] == 0.9

    def test_refresh(self) -> None:
        manager = make_proxy_manager(available=5)
        client = TestClient(make_app(proxy_manager=manager))

        resp = client.post("/api/proxies/refresh", headers=AUTH_HEADERS)

        assert resp.json() == {"status": "refreshed", "count": 5}

    def test_disabled_proxies_return_404(self) -> None:
        client = TestClient(make_app(proxies=False))

        assert client.get("/api/proxies/stats", headers=AUTH_HEADERS).status_code == 404
        assert client.post("/api/proxies/refresh", headers=AUTH_HEADERS).status_code == 404
