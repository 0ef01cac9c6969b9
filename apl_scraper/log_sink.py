"""Loguru sink для записи WARNING+ логов в Supabase."""

from supabase import Client

LOGS_TABLE = "scrape_logs"


def create_supabase_sink(db: Client):
    """Фабрика: вернуть sink-функцию, привязанную к db-клиенту."""

    def sink(message) -> None:
        record = message.record
        row = {
            "level": record["level"].name,
            "module": record["name"],
            "message": str(record["message"]),
        }
        # logger.bind(job_id=...)
        job_id = record.get("extra", {}).get("job_id")
        if job_id:
            row["job_id"] = job_id
        try:
            db.table(LOGS_TABLE).insert(row).execute()
        except Exception:
            pass  # Ошибка логирования не должна ронять приложение

    return sink
