"""Durable очередь задач поверх таблицы scrape_queue."""
import asyncio
from typing import Any

from loguru import logger
from supabase import Client

from apl_scraper.config import Settings
from apl_scraper.database import (
    QUEUE_TABLE,
    claim_next_queue_item,
    clear_queue,
    close_client,
    count_queue_items,
    enqueue_queue_item,
    fetch_failed_queue_items,
    mark_queue_item_completed,
    mark_queue_item_failed,
    rearm_queue_item,
    sanitize_error,
    update_job_status,
)
from apl_scraper.models.queue import QueueItem

QUEUE_STATES = ("waiting", "active", "completed", "failed")


class QueueClosedError(RuntimeError):
    """Очередь закрыта — новые задачи не принимаются."""


class JobQueue:
    """
    Admission control и жизненный цикл элементов очереди.

    Уникальность job_id среди waiting/active элементов обеспечивает БД
    (частичный unique index), поэтому дубликат не попадает в обработку
    даже при нескольких процессах.
    """

    def __init__(self, db: Client, settings: Settings) -> None:
        self.db = db
        self.settings = settings
        self.shutdown_event = asyncio.Event()
        self.closed = False
        self._paused = False
        self._worker_task: asyncio.Task[Any] | None = None

    # --- постановка -------------------------------------------------------

    def _ensure_open(self) -> None:
        if self.closed:
            raise QueueClosedError("Queue is closed")

    async def enqueue(self, job_id: str, priority: int = 0, delay_ms: int = 0) -> str | None:
        """
        Поставить задачу в очередь.

        Returns:
            id элемента очереди или None, если задача уже ждёт/выполняется.
        """
        self._ensure_open()
        item_id = await enqueue_queue_item(
            self.db, job_id, priority, delay_ms, self.settings.queue_max_attempts,
        )
        if item_id is None:
            logger.info(f"Job {job_id} is already queued, duplicate rejected")
            return None

        await update_job_status(self.db, job_id, "queued")
        logger.info(f"Job {job_id} added to queue")
        return item_id

    async def enqueue_bulk(self, jobs: list[dict[str, Any]]) -> list[str | None]:
        """Пакетная постановка: задача i получает задержку i × bulk_stagger_ms."""
        self._ensure_open()
        item_ids: list[str | None] = []
        for index, job in enumerate(jobs):
            item_ids.append(await self.enqueue(
                job["id"],
                priority=job.get("priority") or 0,
                delay_ms=index * self.settings.bulk_stagger_ms,
            ))
        added = sum(1 for item_id in item_ids if item_id)
        logger.info(f"{added}/{len(jobs)} jobs added to queue")
        return item_ids

    # --- обработка --------------------------------------------------------

    async def claim(self, worker_id: str) -> QueueItem | None:
        """Следующий готовый элемент, если очередь не на паузе и не закрыта."""
        if self._paused or self.closed:
            return None
        row = await claim_next_queue_item(self.db, worker_id)
        return QueueItem.model_validate(row) if row else None

    async def complete(self, item: QueueItem) -> None:
        await mark_queue_item_completed(self.db, item.id)

    async def fail(self, item: QueueItem, error: str) -> bool:
        """
        Зафиксировать неудачную попытку.

        Returns:
            True — элемент перепоставлен с backoff, False — попытки исчерпаны.
        """
        retried = await mark_queue_item_failed(
            self.db,
            item.id,
            item.attempts_made,
            item.max_attempts,
            error,
            self.settings.queue_backoff_base_ms,
        )
        if retried:
            await update_job_status(self.db, item.job_id, "queued")
        else:
            logger.error(
                f"Job {item.job_id} exceeded max attempts "
                f"({item.attempts_made}/{item.max_attempts}): {sanitize_error(error)}"
            )
        return retried

    # --- управление -------------------------------------------------------

    async def stats(self) -> dict[str, Any]:
        """Количество элементов по состояниям. Ошибка БД → нули + error."""
        try:
            counts = {state: await count_queue_items(self.db, state) for state in QUEUE_STATES}
        except Exception as e:
            logger.error(f"Error getting queue stats: {sanitize_error(str(e))}")
            return {**{state: 0 for state in QUEUE_STATES}, "total": 0, "error": str(e)}
        return {**counts, "total": sum(counts.values()), "paused": self._paused}

    async def pause(self) -> None:
        self._paused = True
        logger.info("Queue paused")

    async def resume(self) -> None:
        self._paused = False
        logger.info("Queue resumed")

    @property
    def is_paused(self) -> bool:
        return self._paused

    async def clear(self) -> int:
        """Удалить все элементы очереди."""
        removed = await clear_queue(self.db)
        logger.warning(f"Queue cleared ({removed} items removed from {QUEUE_TABLE})")
        return removed

    async def retry_failed(self) -> int:
        """Перепоставить все failed элементы; ошибка одного не прерывает пакет."""
        items = await fetch_failed_queue_items(self.db)
        retried = 0
        for item in items:
            try:
                await rearm_queue_item(self.db, item["id"])
                await update_job_status(self.db, item["job_id"], "queued")
                retried += 1
            except Exception as e:
                logger.error(f"Failed to retry job {item['job_id']}: {sanitize_error(str(e))}")
        logger.info(f"Retried {retried}/{len(items)} failed jobs")
        return retried

    # --- shutdown ---------------------------------------------------------

    def attach_worker(self, task: asyncio.Task[Any]) -> None:
        """Привязать задачу run_worker — close() остановит её первой."""
        self._worker_task = task

    async def _stop_worker(self) -> None:
        self.shutdown_event.set()
        if self._worker_task is not None:
            await self._worker_task
        logger.info("Worker closed")

    async def _close_handle(self) -> None:
        self.closed = True
        logger.info("Queue closed")

    async def _close_connection(self) -> None:
        await close_client(self.db)
        logger.info("Storage connection closed")

    async def close(self) -> None:
        """По порядку: воркер, очередь, соединение. Ошибка шага не отменяет следующие."""
        steps = (
            ("worker", self._stop_worker),
            ("queue", self._close_handle),
            ("storage connection", self._close_connection),
        )
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.error(f"Error closing {name}: {e}")
