"""CRUD-операции с Supabase: задачи, результаты, прокси, очередь."""
import asyncio
import re
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from postgrest.types import CountMethod
from supabase import Client

JOBS_TABLE = "scraping_jobs"
RESULTS_TABLE = "scraped_data"
PROXIES_TABLE = "proxy_list"
QUEUE_TABLE = "scrape_queue"


async def run_in_thread(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Выполнить синхронный вызов Supabase в отдельном потоке."""
    return await asyncio.to_thread(func, *args, **kwargs)


def sanitize_error(error: str) -> str:
    """Убрать потенциальные креденшалы из сообщения об ошибке."""
    return re.sub(r"://[^@\s]+@", "://***:***@", error)


def get_backoff_ms(attempts: int, base_ms: int) -> int:
    """
    Экспоненциальный backoff для retry.
    base=2000: attempt 1 → 2с, attempt 2 → 4с, attempt 3 → 8с.
    """
    return base_ms * (2 ** max(0, attempts - 1))


def _extract_rpc_scalar(data: Any) -> Any:
    """Extract scalar value from Supabase RPC response."""
    if isinstance(data, list):
        if not data:
            return None
        first_item = data[0]
        if isinstance(first_item, dict):
            if not first_item:
                return None
            if len(first_item) == 1:
                return next(iter(first_item.values()))
            return first_item
        return first_item

    if isinstance(data, dict):
        if not data:
            return None
        if len(data) == 1:
            return next(iter(data.values()))
        return data

    return data


def _extract_rpc_row(data: Any) -> dict[str, Any] | None:
    """RPC, возвращающая строку таблицы: [row] | row | [] | {id: null}."""
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict) or data.get("id") is None:
        return None
    return data


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# --- scraping_jobs ---------------------------------------------------------


async def fetch_job(db: Client, job_id: str) -> dict[str, Any] | None:
    """Получить задачу по ID."""
    result = await run_in_thread(
        db.table(JOBS_TABLE).select("*").eq("id", job_id).limit(1).execute
    )
    return result.data[0] if result.data else None


async def update_job_status(
    db: Client, job_id: str, status: str, **fields: Any,
) -> None:
    """
    Обновить статус задачи (last-writer-wins).
    Ошибка записи статуса логируется и не роняет обработку задачи.
    """
    data = {"status": status, "updated_at": _now_iso(), **fields}
    try:
        await run_in_thread(
            db.table(JOBS_TABLE).update(data).eq("id", job_id).execute
        )
    except Exception as e:
        logger.error(f"Failed to update job {job_id} status to {status}: {sanitize_error(str(e))}")


async def insert_scraped_data(
    db: Client,
    job_id: str,
    url: str,
    data: dict[str, Any],
    metadata: dict[str, Any],
) -> None:
    """Сохранить результат успешного скрапинга. Ошибка пробрасывается."""
    await run_in_thread(
        db.table(RESULTS_TABLE).insert({
            "job_id": job_id,
            "url": url,
            "data": data,
            "metadata": metadata,
        }).execute
    )


# --- proxy_list ------------------------------------------------------------


async def fetch_active_proxies(db: Client) -> list[dict[str, Any]]:
    """Активные прокси, лучшие (по success_rate) первыми."""
    result = await run_in_thread(
        db.table(PROXIES_TABLE)
        .select("*")
        .eq("status", "active")
        .order("success_rate", desc=True)
        .execute
    )
    return result.data or []


async def fetch_all_proxies(db: Client) -> list[dict[str, Any]]:
    """Все прокси (включая disabled) — для статистики."""
    result = await run_in_thread(
        db.table(PROXIES_TABLE)
        .select("status, country, type, success_rate, total_requests, response_time_ms")
        .execute
    )
    return result.data or []


async def fetch_proxy(db: Client, proxy_id: str) -> dict[str, Any] | None:
    """Получить прокси по ID."""
    result = await run_in_thread(
        db.table(PROXIES_TABLE).select("*").eq("id", proxy_id).limit(1).execute
    )
    return result.data[0] if result.data else None


async def update_proxy(db: Client, proxy_id: str, fields: dict[str, Any]) -> None:
    """Записать обновлённые счётчики прокси."""
    await run_in_thread(
        db.table(PROXIES_TABLE).update(fields).eq("id", proxy_id).execute
    )


# --- scrape_queue ----------------------------------------------------------


async def enqueue_queue_item(
    db: Client,
    job_id: str,
    priority: int = 0,
    delay_ms: int = 0,
    max_attempts: int = 3,
) -> str | None:
    """
    Поставить задачу в очередь через атомарную RPC-функцию.
    Возвращает id элемента или None, если для job_id уже есть
    waiting/active элемент (дубликат отклонён).
    """
    result = await run_in_thread(
        db.rpc("enqueue_scrape_job", {
            "p_job_id": job_id,
            "p_priority": priority,
            "p_delay_ms": delay_ms,
            "p_max_attempts": max_attempts,
        }).execute
    )
    item_id = _extract_rpc_scalar(result.data)
    if item_id:
        logger.debug(f"Queued job {job_id} as item {item_id} (priority={priority}, delay={delay_ms}ms)")
        return item_id

    logger.debug(f"Job {job_id} already waiting/active in queue, skipping")
    return None


async def claim_next_queue_item(db: Client, worker_id: str) -> dict[str, Any] | None:
    """
    Атомарно забрать следующий готовый элемент (FOR UPDATE SKIP LOCKED).
    RPC переводит его в active и инкрементирует attempts_made.
    """
    result = await run_in_thread(
        db.rpc("claim_next_scrape_job", {
            "p_worker_id": worker_id,
            "p_now": _now_iso(),
        }).execute
    )
    return _extract_rpc_row(result.data)


async def mark_queue_item_completed(db: Client, item_id: str) -> None:
    """Пометить элемент очереди как completed."""
    await run_in_thread(
        db.table(QUEUE_TABLE).update({
            "state": "completed",
            "last_error": None,
            "finished_at": _now_iso(),
        }).eq("id", item_id).execute
    )


async def mark_queue_item_failed(
    db: Client,
    item_id: str,
    attempts_made: int,
    max_attempts: int,
    error: str,
    backoff_base_ms: int,
    retry: bool = True,
) -> bool:
    """
    Пометить элемент как failed или вернуть в waiting (retry).
    При retry=True и attempts_made < max_attempts → waiting с backoff.
    Возвращает True, если элемент перепоставлен.
    """
    safe_error = sanitize_error(error)

    if retry and attempts_made < max_attempts:
        backoff = get_backoff_ms(attempts_made, backoff_base_ms)
        available_at = datetime.now(UTC) + timedelta(milliseconds=backoff)
        await run_in_thread(
            db.table(QUEUE_TABLE).update({
                "state": "waiting",
                "last_error": safe_error,
                "available_at": available_at.isoformat(),
                "worker_id": None,
            }).eq("id", item_id).execute
        )
        logger.info(f"Queue item {item_id} retry in {backoff}ms (attempt {attempts_made}/{max_attempts})")
        return True

    await run_in_thread(
        db.table(QUEUE_TABLE).update({
            "state": "failed",
            "last_error": safe_error,
            "finished_at": _now_iso(),
        }).eq("id", item_id).execute
    )
    return False


async def count_queue_items(db: Client, state: str) -> int:
    """Количество элементов очереди в состоянии state."""
    result = await run_in_thread(
        db.table(QUEUE_TABLE)
        .select("id", count=CountMethod.exact)
        .eq("state", state)
        .execute
    )
    return result.count or 0


async def fetch_failed_queue_items(db: Client, limit: int = 1000) -> list[dict[str, Any]]:
    """Элементы очереди в состоянии failed."""
    result = await run_in_thread(
        db.table(QUEUE_TABLE)
        .select("id, job_id")
        .eq("state", "failed")
        .order("finished_at", desc=False)
        .limit(limit)
        .execute
    )
    return result.data or []


async def rearm_queue_item(db: Client, item_id: str) -> None:
    """Вернуть failed элемент в waiting с обнулёнными попытками."""
    await run_in_thread(
        db.table(QUEUE_TABLE).update({
            "state": "waiting",
            "attempts_made": 0,
            "last_error": None,
            "available_at": _now_iso(),
            "finished_at": None,
        }).eq("id", item_id).eq("state", "failed").execute
    )


async def clear_queue(db: Client) -> int:
    """Удалить все элементы очереди. Возвращает количество удалённых."""
    result = await run_in_thread(db.rpc("clear_scrape_queue", {}).execute)
    return _extract_rpc_scalar(result.data) or 0


async def recover_stuck_queue_items(db: Client, max_active_minutes: int = 30) -> int:
    """
    Вернуть зависшие active элементы в waiting.
    Элементы, которые в active дольше max_active_minutes (процесс упал
    посреди задачи), возвращаются в очередь или падают, если попытки исчерпаны.
    """
    threshold = (datetime.now(UTC) - timedelta(minutes=max_active_minutes)).isoformat()

    result = await run_in_thread(
        db.table(QUEUE_TABLE)
        .select("id, job_id, attempts_made, max_attempts")
        .eq("state", "active")
        .lt("started_at", threshold)
        .execute
    )

    if not result.data:
        return 0

    recovered = 0
    for item in result.data:
        if item["attempts_made"] >= item["max_attempts"]:
            await run_in_thread(
                db.table(QUEUE_TABLE).update({
                    "state": "failed",
                    "last_error": f"Stuck in active for >{max_active_minutes}min, max attempts exhausted",
                    "finished_at": _now_iso(),
                }).eq("id", item["id"]).execute
            )
            await update_job_status(
                db, item["job_id"], "failed",
                error_message=f"Stuck in running for >{max_active_minutes}min",
            )
        else:
            await run_in_thread(
                db.table(QUEUE_TABLE).update({
                    "state": "waiting",
                    "worker_id": None,
                    "last_error": f"Recovered: stuck in active for >{max_active_minutes}min",
                }).eq("id", item["id"]).execute
            )
            await update_job_status(db, item["job_id"], "queued")
            recovered += 1

    if recovered:
        logger.warning(f"Recovered {recovered} stuck queue items (>{max_active_minutes}min)")
    return recovered


async def close_client(db: Client) -> None:
    """Закрыть HTTP-сессию PostgREST клиента."""
    await run_in_thread(db.postgrest.session.close)
