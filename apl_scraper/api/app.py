"""FastAPI-приложение для управления очередью и прокси."""
import hmac
import time
from collections import defaultdict

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from apl_scraper.api.schemas import (
    BulkEnqueueRequest,
    BulkEnqueueResponse,
    EnqueueRequest,
    EnqueueResponse,
    HealthResponse,
    ProxyStatsResponse,
    QueueActionResponse,
    QueueStatsResponse,
)
from apl_scraper.config import Settings
from apl_scraper.database import sanitize_error
from apl_scraper.engine.browser import BrowserPool
from apl_scraper.proxy.manager import ProxyManager
from apl_scraper.worker.queue import JobQueue, QueueClosedError

security = HTTPBearer(auto_error=False)

# Rate limiting: sliding window per IP
RATE_LIMIT_MAX_REQUESTS = 60
RATE_LIMIT_WINDOW_SECONDS = 60
_rate_limit_store: dict[str, list[float]] = defaultdict(list)


def create_app(
    queue: JobQueue,
    proxy_manager: ProxyManager | None,
    browser_pool: BrowserPool | None,
    settings: Settings,
) -> FastAPI:
    """Создать FastAPI-приложение с зависимостями."""
    app = FastAPI(title="APL Scraper API", version="2.0.0")

    app.state.queue = queue
    app.state.proxy_manager = proxy_manager
    app.state.browser_pool = browser_pool
    app.state.settings = settings

    async def check_rate_limit(request: Request) -> None:
        """Простой in-memory rate limiter: sliding window per IP."""
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window_start = now - RATE_LIMIT_WINDOW_SECONDS

        timestamps = _rate_limit_store[client_ip]
        _rate_limit_store[client_ip] = [t for t in timestamps if t > window_start]

        if len(_rate_limit_store[client_ip]) >= RATE_LIMIT_MAX_REQUESTS:
            raise HTTPException(status_code=429, detail="Rate limit exceeded")

        _rate_limit_store[client_ip].append(now)

        # Периодическая очистка стухших IP
        if len(_rate_limit_store) > 100:
            stale_ips = [
                ip for ip, ts in _rate_limit_store.items()
                if not ts or ts[-1] <= window_start
            ]
            for ip in stale_ips:
                del _rate_limit_store[ip]

    async def verify_api_key(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> None:
        """Проверка API-ключа."""
        expected = settings.scraper_api_key.get_secret_value()
        if credentials is None or not hmac.compare_digest(
            credentials.credentials, expected
        ):
            raise HTTPException(status_code=401, detail="Invalid API key")

    protected = [Depends(check_rate_limit), Depends(verify_api_key)]

    def _require_proxy_manager() -> ProxyManager:
        if proxy_manager is None:
            raise HTTPException(status_code=404, detail="Proxy rotation is disabled")
        return proxy_manager

    @app.get("/api/health", response_model=HealthResponse)
    async def health(response: Response) -> HealthResponse:
        """Healthcheck — без авторизации."""
        stats = await queue.stats()
        status = "ok"
        if "error" in stats:
            response.status_code = 503
            status = "degraded"

        return HealthResponse(
            status=status,
            queue_paused=queue.is_paused,
            jobs_active=stats["active"],
            jobs_waiting=stats["waiting"],
            proxies_available=proxy_manager.available_count() if proxy_manager else 0,
            browser_running=browser_pool.is_running if browser_pool else False,
        )

    @app.get("/api/queue/stats", response_model=QueueStatsResponse, dependencies=protected)
    async def queue_stats() -> dict:
        """Количество элементов очереди по состояниям."""
        return await queue.stats()

    @app.post(
        "/api/queue/jobs", status_code=201,
        response_model=EnqueueResponse, dependencies=protected,
    )
    async def enqueue(body: EnqueueRequest) -> dict:
        """Поставить задачу в очередь. Дубликат не ошибка — status=duplicate."""
        try:
            item_id = await queue.enqueue(body.job_id, body.priority, body.delay_ms)
        except QueueClosedError:
            raise HTTPException(status_code=503, detail="Queue is closed")
        return {
            "job_id": body.job_id,
            "queue_item_id": item_id,
            "status": "queued" if item_id else "duplicate",
        }

    @app.post(
        "/api/queue/jobs/bulk", status_code=201,
        response_model=BulkEnqueueResponse, dependencies=protected,
    )
    async def enqueue_bulk(body: BulkEnqueueRequest) -> dict:
        """Пакетная постановка со сдвигом bulk_stagger_ms между задачами."""
        jobs = [job.model_dump() for job in body.jobs]
        try:
            item_ids = await queue.enqueue_bulk(jobs)
        except QueueClosedError:
            raise HTTPException(status_code=503, detail="Queue is closed")

        results = [
            {
                "job_id": job["id"],
                "queue_item_id": item_id,
                "status": "queued" if item_id else "duplicate",
            }
            for job, item_id in zip(jobs, item_ids)
        ]
        queued = sum(1 for item_id in item_ids if item_id)
        return {"queued": queued, "duplicates": len(jobs) - queued, "jobs": results}

    @app.post("/api/queue/pause", response_model=QueueActionResponse, dependencies=protected)
    async def pause() -> dict:
        await queue.pause()
        return {"status": "paused"}

    @app.post("/api/queue/resume", response_model=QueueActionResponse, dependencies=protected)
    async def resume() -> dict:
        await queue.resume()
        return {"status": "resumed"}

    @app.post("/api/queue/clear", response_model=QueueActionResponse, dependencies=protected)
    async def clear() -> dict:
        """Удалить все элементы очереди (операционный сброс)."""
        try:
            removed = await queue.clear()
        except Exception as e:
            logger.error(f"Failed to clear queue: {sanitize_error(str(e))}")
            raise HTTPException(status_code=500, detail="Failed to clear queue")
        return {"status": "cleared", "count": removed}

    @app.post("/api/queue/retry-failed", response_model=QueueActionResponse, dependencies=protected)
    async def retry_failed() -> dict:
        """Перепоставить все failed задачи."""
        try:
            retried = await queue.retry_failed()
        except Exception as e:
            logger.error(f"Failed to retry failed jobs: {sanitize_error(str(e))}")
            raise HTTPException(status_code=500, detail="Failed to retry failed jobs")
        return {"status": "retried", "count": retried}

    @app.get("/api/proxies/stats", response_model=ProxyStatsResponse, dependencies=protected)
    async def proxy_stats() -> dict:
        manager = _require_proxy_manager()
        try:
            return await manager.stats()
        except Exception as e:
            logger.error(f"Failed to get proxy stats: {sanitize_error(str(e))}")
            raise HTTPException(status_code=500, detail="Failed to get proxy stats")

    @app.post("/api/proxies/refresh", response_model=QueueActionResponse, dependencies=protected)
    async def refresh_proxies() -> dict:
        """Перечитать активные прокси из БД."""
        manager = _require_proxy_manager()
        count = await manager.refresh()
        return {"status": "refreshed", "count": count}

    return app
