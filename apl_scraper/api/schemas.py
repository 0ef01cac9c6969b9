"""Pydantic-схемы для admin API пайплайна."""
import uuid

from pydantic import BaseModel, Field, field_validator


def _check_uuid(value: str) -> str:
    value = value.strip()
    uuid.UUID(value)  # ValueError → 422
    return value


class EnqueueRequest(BaseModel):
    """Поставить одну задачу в очередь."""

    job_id: str
    priority: int = Field(default=0, ge=0)
    delay_ms: int = Field(default=0, ge=0)

    @field_validator("job_id")
    @classmethod
    def validate_job_id(cls, v: str) -> str:
        return _check_uuid(v)


class BulkJob(BaseModel):
    id: str
    priority: int = Field(default=0, ge=0)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        return _check_uuid(v)


class BulkEnqueueRequest(BaseModel):
    """Пакетная постановка со сдвигом по времени."""

    jobs: list[BulkJob] = Field(min_length=1, max_length=500)


class EnqueueResponse(BaseModel):
    job_id: str
    queue_item_id: str | None
    status: str  # "queued" | "duplicate"


class BulkEnqueueResponse(BaseModel):
    queued: int
    duplicates: int
    jobs: list[EnqueueResponse]


class QueueStatsResponse(BaseModel):
    waiting: int
    active: int
    completed: int
    failed: int
    total: int
    paused: bool = False
    error: str | None = None


class QueueActionResponse(BaseModel):
    """Ответ на pause / resume / clear / retry-failed."""

    status: str
    count: int | None = None


class ProxyStatsResponse(BaseModel):
    total: int
    active: int
    disabled: int
    failed: int
    available: int
    avg_success_rate: float
    avg_response_time: float
    by_country: dict[str, int]
    by_type: dict[str, int]


class HealthResponse(BaseModel):
    status: str  # "ok" | "degraded"
    queue_paused: bool
    jobs_active: int
    jobs_waiting: int
    proxies_available: int
    browser_running: bool
