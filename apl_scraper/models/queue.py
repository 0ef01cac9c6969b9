"""Pydantic-модель элемента очереди scrape_queue."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

QueueState = Literal["waiting", "active", "completed", "failed"]


class QueueItem(BaseModel):
    """Элемент очереди — ссылка на задачу + состояние попыток."""

    id: str
    job_id: str
    priority: int = 0
    state: QueueState = "waiting"
    attempts_made: int = 0
    max_attempts: int = 3
    available_at: datetime | None = None
    last_error: str | None = None
    worker_id: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempts_made >= self.max_attempts
