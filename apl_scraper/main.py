"""Точка входа пайплайна — инициализация и запуск API + воркера."""
import asyncio
import signal
import sys

import uvicorn
from loguru import logger
from supabase import create_client

from apl_scraper.api.app import create_app
from apl_scraper.config import Settings, load_settings
from apl_scraper.engine.browser import BrowserPool
from apl_scraper.log_sink import create_supabase_sink
from apl_scraper.proxy.manager import ProxyManager
from apl_scraper.worker.loop import run_worker
from apl_scraper.worker.queue import JobQueue
from apl_scraper.worker.scheduler import create_scheduler


def setup_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_level == "DEBUG":
        logger.add("logs/scraper.log", rotation="100 MB", retention="7 days")


async def main() -> None:
    """Инициализация и запуск API + воркера."""
    settings = load_settings()
    setup_logging(settings)
    logger.info("Starting scrape pipeline")

    # Supabase
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())

    # Персистить WARNING+ логи в Supabase
    logger.add(
        create_supabase_sink(db),
        level="WARNING",
        enqueue=True,
        serialize=False,
    )

    # APScheduler: восстановление очереди, health-check прокси
    scheduler = create_scheduler(db, settings)

    proxy_manager: ProxyManager | None = None
    if settings.use_proxies:
        proxy_manager = ProxyManager(db, settings, scheduler=scheduler)
        await proxy_manager.load_proxies()
        proxy_manager.start()

    browser_pool = BrowserPool(settings)
    queue = JobQueue(db, settings)

    # FastAPI
    app = create_app(queue, proxy_manager, browser_pool, settings)
    config = uvicorn.Config(app, host="0.0.0.0", port=settings.scraper_port, log_level="warning")
    server = uvicorn.Server(config)

    # Graceful shutdown
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler.start()
    logger.info("Scheduler started")

    worker_task = asyncio.create_task(
        run_worker(queue, db, settings, browser_pool, proxy_manager)
    )
    queue.attach_worker(worker_task)

    logger.info(f"API server starting on port {settings.scraper_port}")
    server_task = asyncio.create_task(server.serve())
    stop_task = asyncio.create_task(stop_event.wait())

    try:
        await asyncio.wait(
            [server_task, worker_task, stop_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        logger.info("Shutting down...")
        server.should_exit = True
        stop_task.cancel()
        if proxy_manager is not None:
            proxy_manager.cleanup()
        scheduler.shutdown(wait=False)
        # Воркер → очередь → соединение с БД
        await queue.close()
        await asyncio.gather(server_task, return_exceptions=True)
        await browser_pool.close()
        logger.info("Pipeline stopped gracefully")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
