"""Обработчик одной попытки задачи скрапинга."""
import json
import time
from datetime import UTC, datetime
from typing import Any

from loguru import logger
from supabase import Client

from apl_scraper.config import Settings
from apl_scraper.database import (
    fetch_job,
    insert_scraped_data,
    update_job_status,
)
from apl_scraper.engine.browser import BrowserPool
from apl_scraper.engine.scraper import PlaywrightScraper
from apl_scraper.models.job import JobConfig, ScrapeJob, ScrapeResult
from apl_scraper.models.proxy import Proxy
from apl_scraper.models.queue import QueueItem
from apl_scraper.proxy.manager import ProxyManager
from apl_scraper.screenshot_storage import build_screenshot_path, upload_screenshot

SCRAPER_VERSION = "2.0"

# Ошибки, за которые отвечает прокси (страница не открылась через него)
PROXY_FAULT_ERRORS = frozenset({"NavigationError", "NavigationTimeoutError"})


class JobFailedError(Exception):
    """Попытка задачи неудачна — решение о retry принимает очередь."""


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


async def _select_proxy(
    proxy_manager: ProxyManager | None, settings: Settings,
) -> Proxy | None:
    if proxy_manager is None or not settings.use_proxies:
        return None
    proxy = await proxy_manager.select_next(set(settings.proxy_exclude_countries_list))
    if proxy is None:
        logger.info("No proxy available, scraping without proxy")
    return proxy


async def _report_proxy(
    proxy_manager: ProxyManager | None, proxy: Proxy | None, result: ScrapeResult,
) -> None:
    if proxy_manager is None or proxy is None:
        return
    if result.success:
        await proxy_manager.report_success(proxy.id, result.duration_ms)
    elif result.error_type in PROXY_FAULT_ERRORS:
        await proxy_manager.report_failure(proxy.id, result.error or "navigation failed")


async def run_scrape(
    config: JobConfig,
    settings: Settings,
    browser_pool: BrowserPool,
    proxy: Proxy | None = None,
) -> ScrapeResult:
    """Создать сессию движка и выполнить сценарий; сессия закрывается всегда."""
    scraper: PlaywrightScraper | None = None
    try:
        scraper = PlaywrightScraper(
            browser_pool, settings, proxy=ProxyManager.get_playwright_proxy(proxy),
        )
        return await scraper.scrape(config)
    finally:
        if scraper is not None:
            await scraper.close()


async def handle_scrape_job(
    db: Client,
    item: QueueItem,
    settings: Settings,
    browser_pool: BrowserPool,
    proxy_manager: ProxyManager | None = None,
) -> dict[str, Any]:
    """
    Одна попытка задачи:
    1. running + started_at + attempts
    2. загрузка задачи из БД (ошибка фатальна для попытки)
    3. сессия движка и scrape(config)
    4. успех → scraped_data + completed
    5. неудача → failed + error_message, JobFailedError для очереди

    Returns:
        Сводка {success, data_size, processing_time} для completed задачи.

    Raises:
        JobFailedError: движок вернул ошибку или задача не найдена.
    """
    job_id = item.job_id
    started = time.monotonic()
    log = logger.bind(job_id=job_id)
    log.info(f"Processing job {job_id} (attempt {item.attempts_made}/{item.max_attempts})")

    await update_job_status(
        db, job_id, "running",
        started_at=_now_iso(),
        attempts=item.attempts_made,
    )

    row = await fetch_job(db, job_id)
    if row is None:
        raise JobFailedError(f"Failed to fetch job data: job {job_id} not found")
    job = ScrapeJob.model_validate(row)
    config = job.build_config()
    log.debug(f"Job details: {job.url}")

    proxy = await _select_proxy(proxy_manager, settings)
    result = await run_scrape(config, settings, browser_pool, proxy)
    await _report_proxy(proxy_manager, proxy, result)

    if not result.success:
        error = result.error or "Scrape failed"
        await update_job_status(
            db, job_id, "failed",
            error_message=error,
            attempts=item.attempts_made,
        )
        raise JobFailedError(error)

    screenshot_path = None
    if result.screenshot:
        screenshot_path = await upload_screenshot(
            db,
            settings.screenshots_bucket,
            build_screenshot_path(job_id, item.attempts_made),
            result.screenshot,
        )

    processing_time = int((time.monotonic() - started) * 1000)
    metadata: dict[str, Any] = {
        "scraped_at": _now_iso(),
        "processing_time": processing_time,
        "scraper_version": SCRAPER_VERSION,
        "config": config.model_dump(mode="json", by_alias=True),
        "proxy_id": proxy.id if proxy else None,
        "screenshot_path": screenshot_path,
    }
    await insert_scraped_data(db, job_id, job.url, result.data, metadata)

    summary = {
        "success": True,
        "data_size": len(json.dumps(result.data, default=str)),
        "processing_time": processing_time,
    }
    await update_job_status(
        db, job_id, "completed",
        completed_at=_now_iso(),
        error_message=None,
        result=summary,
    )
    log.info(f"Job {job_id} completed in {processing_time}ms")
    return summary
