"""Загрузка скриншотов страниц в Supabase Storage."""
import asyncio
from datetime import UTC, datetime

from loguru import logger
from supabase import Client

from apl_scraper.database import run_in_thread

UPLOAD_MAX_RETRIES = 3
UPLOAD_RETRY_DELAY = 1.0  # секунды между попытками


def _is_eagain(exc: BaseException) -> bool:
    """Проверить, содержит ли исключение EAGAIN (Errno 11/35).

    Storage SDK оборачивает OSError в свои исключения, поэтому проверяем
    всю цепочку __cause__/__context__ и строку.
    """
    current: BaseException | None = exc
    while current is not None:
        if isinstance(current, OSError) and current.errno in (11, 35):
            return True
        current = current.__cause__ or current.__context__
    return "Errno 11" in str(exc) or "Errno 35" in str(exc)


def build_screenshot_path(job_id: str, attempt: int) -> str:
    """{job_id}/attempt-{N}-{timestamp}.png"""
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    return f"{job_id}/attempt-{attempt}-{stamp}.png"


async def upload_screenshot(db: Client, bucket: str, path: str, data: bytes) -> str | None:
    """Загрузить PNG (upsert) с retry при EAGAIN. Вернуть путь или None."""
    for attempt in range(1, UPLOAD_MAX_RETRIES + 1):
        try:
            await run_in_thread(
                db.storage.from_(bucket).upload,
                path,
                data,
                {"content-type": "image/png", "upsert": "true"},
            )
            logger.debug(f"[screenshot] Uploaded {path} ({len(data)} bytes)")
            return path
        except Exception as e:
            if _is_eagain(e) and attempt < UPLOAD_MAX_RETRIES:
                logger.warning(
                    f"[screenshot] EAGAIN on upload ({path}), "
                    f"attempt {attempt}/{UPLOAD_MAX_RETRIES}, retrying..."
                )
                await asyncio.sleep(UPLOAD_RETRY_DELAY * attempt)
                continue
            logger.error(f"[screenshot] Storage upload failed ({path}): {e}")
            return None
    return None
