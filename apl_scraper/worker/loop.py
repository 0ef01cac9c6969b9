"""Цикл диспатча — claim из очереди + обработка задач в отдельных asyncio-задачах."""
import asyncio
import os
import socket

from loguru import logger
from supabase import Client

from apl_scraper.config import Settings
from apl_scraper.database import sanitize_error, update_job_status
from apl_scraper.engine.browser import BrowserPool
from apl_scraper.models.queue import QueueItem
from apl_scraper.proxy.manager import ProxyManager
from apl_scraper.worker.handlers import JobFailedError, handle_scrape_job
from apl_scraper.worker.queue import JobQueue
from apl_scraper.worker.rate_limiter import SlidingWindowRateLimiter


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


async def process_item(
    queue: JobQueue,
    db: Client,
    item: QueueItem,
    settings: Settings,
    browser_pool: BrowserPool,
    proxy_manager: ProxyManager | None = None,
) -> None:
    """Обработать один элемент очереди. Исключения наружу не выходят."""
    job_id = item.job_id
    try:
        await handle_scrape_job(db, item, settings, browser_pool, proxy_manager)
    except JobFailedError as e:
        logger.warning(f"Job {job_id} failed: {sanitize_error(str(e))}")
        error = str(e)
    except Exception as e:
        logger.exception(f"Unhandled error in job {job_id}: {e}")
        error = str(e) or type(e).__name__
        await update_job_status(
            db, job_id, "failed",
            error_message=sanitize_error(error),
            attempts=item.attempts_made,
        )
    else:
        try:
            await queue.complete(item)
        except Exception as e:
            logger.error(f"Failed to mark queue item {item.id} completed: {sanitize_error(str(e))}")
        return

    try:
        await queue.fail(item, error)
    except Exception as e:
        logger.error(f"Failed to record failure for queue item {item.id}: {sanitize_error(str(e))}")


async def _idle(shutdown_event: asyncio.Event, timeout: float) -> None:
    """Ждать timeout секунд или shutdown — что раньше."""
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=timeout)
    except TimeoutError:
        pass


async def run_worker(
    queue: JobQueue,
    db: Client,
    settings: Settings,
    browser_pool: BrowserPool,
    proxy_manager: ProxyManager | None = None,
    rate_limiter: SlidingWindowRateLimiter | None = None,
    worker_id: str | None = None,
) -> None:
    """
    Основной цикл воркера.

    Не больше worker_concurrency задач одновременно и не больше
    rate_limit_max диспатчей за окно. Цикл сам задачи не ждёт —
    каждая задача живёт в своей asyncio.Task.
    Останавливается по queue.shutdown_event, дожидаясь активных задач.
    """
    if rate_limiter is None:
        rate_limiter = SlidingWindowRateLimiter(
            settings.rate_limit_max, settings.rate_limit_window_seconds,
        )
    worker_id = worker_id or default_worker_id()
    shutdown_event = queue.shutdown_event
    concurrency = max(1, settings.worker_concurrency)
    active_tasks: set[asyncio.Task[None]] = set()
    shutdown_waiter = asyncio.create_task(shutdown_event.wait())

    logger.info(
        f"Worker {worker_id} started (concurrency={concurrency}, "
        f"limit={settings.rate_limit_max}/{settings.rate_limit_window_seconds:.0f}s)"
    )

    try:
        while not shutdown_event.is_set():
            if len(active_tasks) >= concurrency:
                await asyncio.wait(
                    [*active_tasks, shutdown_waiter],
                    return_when=asyncio.FIRST_COMPLETED,
                )
                continue

            if queue.is_paused:
                await _idle(shutdown_event, settings.worker_poll_interval)
                continue

            delay = rate_limiter.delay_until_slot()
            if delay > 0:
                logger.debug(f"Rate limit reached, next dispatch in {delay:.1f}s")
                await _idle(shutdown_event, delay)
                continue

            try:
                item = await queue.claim(worker_id)
            except Exception as e:
                logger.exception(f"Error claiming queue item: {e}")
                item = None

            if item is None:
                await _idle(shutdown_event, settings.worker_poll_interval)
                continue

            rate_limiter.record()
            task = asyncio.create_task(
                process_item(queue, db, item, settings, browser_pool, proxy_manager)
            )
            active_tasks.add(task)
            task.add_done_callback(active_tasks.discard)
    finally:
        shutdown_waiter.cancel()

    # Graceful shutdown: дождаться завершения активных задач
    if active_tasks:
        timeout = settings.worker_shutdown_timeout
        logger.info(f"Waiting for {len(active_tasks)} active jobs to finish...")
        _, pending = await asyncio.wait(active_tasks, timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} jobs that didn't finish in {timeout:.0f}s")
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    logger.info("Worker shutting down")
