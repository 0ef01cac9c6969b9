"""APScheduler: периодическое обслуживание очереди."""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger
from supabase import Client

from apl_scraper.config import Settings
from apl_scraper.database import recover_stuck_queue_items, sanitize_error

RECOVER_JOB_ID = "recover_stuck_queue_items"
RECOVER_INTERVAL_MINUTES = 10


async def recover_queue(db: Client, settings: Settings) -> None:
    """Вернуть зависшие active элементы очереди в waiting (или failed)."""
    try:
        await recover_stuck_queue_items(db, max_active_minutes=settings.stuck_job_minutes)
    except Exception as e:
        logger.error(f"Error recovering stuck queue items: {sanitize_error(str(e))}")


def create_scheduler(db: Client, settings: Settings) -> AsyncIOScheduler:
    """Создать и настроить APScheduler.

    Health-sweep и перепроверки прокси регистрирует ProxyManager.start().
    """
    scheduler = AsyncIOScheduler(
        job_defaults={
            # Дефолтный misfire_grace_time=1с слишком мал для async job'ов:
            # при задержке event loop они тихо пропускаются.
            "misfire_grace_time": None,
            "coalesce": True,
        }
    )

    scheduler.add_job(
        recover_queue,
        "interval",
        minutes=RECOVER_INTERVAL_MINUTES,
        kwargs={"db": db, "settings": settings},
        id=RECOVER_JOB_ID,
    )

    return scheduler
