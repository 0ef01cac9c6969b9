"""Pydantic-модели задачи скрапинга и её конфигурации."""
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

JobStatus = Literal["pending", "queued", "running", "completed", "failed", "paused"]

# Словарь действий интерпретатора
ACTION_TYPES = (
    "click",
    "type",
    "typeHuman",
    "scroll",
    "scrollToBottom",
    "wait",
    "waitAndClick",
    "hover",
    "select",
    "keyPress",
    "waitForNavigation",
)

EXTRACTOR_TYPES = ("text", "html", "attribute", "href", "src", "count", "exists")
TRANSFORMS = ("lowercase", "uppercase", "trim", "number")


class _CamelModel(BaseModel):
    """База для JSON-конфига: ключи приходят в camelCase из API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScriptedAction(_CamelModel):
    """Один шаг браузерного сценария.

    type не ограничен Literal: неизвестные типы пропускаются интерпретатором,
    а не отклоняются при парсинге.
    """

    type: str = ""
    selector: str | None = None
    value: str | None = None
    delay: int = 0                  # мс перед действием
    wait_time: int | None = None    # мс для wait / waitAndClick


class Extractor(_CamelModel):
    """Правило извлечения одного именованного поля."""

    name: str
    type: str = "text"
    selector: str = ""
    attribute: str | None = None    # обязателен только для type=attribute
    multiple: bool = False
    transform: str | None = None


class JobConfig(_CamelModel):
    """Сценарий задачи: действия, экстракторы, ожидание, скриншот."""

    url: str
    actions: list[ScriptedAction] = []
    extractors: list[Extractor] = []
    wait_for: str | None = None
    timeout: int | None = None      # мс на навигацию; None → из Settings
    take_screenshot: bool = False


class ScrapeJob(BaseModel):
    """Задача из таблицы scraping_jobs."""

    id: str
    url: str
    status: JobStatus = "pending"
    config: dict[str, Any] = {}
    attempts: int = 0
    error_message: str | None = None
    result: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def build_config(self) -> JobConfig:
        """Собрать JobConfig: url из задачи, остальное из config."""
        return JobConfig.model_validate({**self.config, "url": self.url})


class ScrapeResult(BaseModel):
    """Результат одного запуска движка.

    Воркер видит только success + data или error, исключения движка
    сюда конвертируются.
    """

    success: bool
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None
    screenshot: bytes | None = None
    duration_ms: int = 0
