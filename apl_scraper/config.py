"""Конфигурация пайплайна из переменных окружения."""
from functools import cached_property

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_comma(value: str) -> list[str]:
    """Парсит строку 'a,b,c' → ['a', 'b', 'c']."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Настройки пайплайна — парсятся из env или .env файла."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase
    supabase_url: str
    supabase_service_key: SecretStr

    # Воркер и очередь
    worker_concurrency: int = 3
    worker_poll_interval: float = 2.0
    worker_shutdown_timeout: float = 30.0
    rate_limit_max: int = 10               # Диспатчей за окно
    rate_limit_window_seconds: float = 60.0
    queue_max_attempts: int = 3
    queue_backoff_base_ms: int = 2000
    bulk_stagger_ms: int = 1000
    stuck_job_minutes: int = 30
    log_level: str = "INFO"

    # Прокси
    use_proxies: bool = True
    proxy_exclude_countries: str = ""
    proxy_skip_success_rate: float = 0.5
    proxy_skip_min_requests: int = 10
    proxy_disable_success_rate: float = 0.1
    proxy_disable_min_requests: int = 20
    proxy_quarantine_minutes: float = 5
    proxy_health_interval_minutes: float = 10
    proxy_health_sample_size: int = 5
    proxy_fallback_cooldown_seconds: float = 30.0
    proxy_probe_url: str = "https://httpbin.org/ip"
    proxy_probe_timeout: float = 10.0

    # Браузер
    headless: bool = True
    navigation_timeout_ms: int = 30000
    wait_for_timeout_ms: int = 10000
    action_timeout_ms: int = 5000
    extraction_timeout_ms: int = 5000
    human_delay_min_ms: int = 500
    human_delay_max_ms: int = 1500
    screenshots_bucket: str = "scrape-screenshots"

    # API
    scraper_api_key: SecretStr
    scraper_port: int = Field(
        default=8001,
        validation_alias=AliasChoices("SCRAPER_PORT", "PORT"),
    )

    @cached_property
    def proxy_exclude_countries_list(self) -> list[str]:
        """Парсит PROXY_EXCLUDE_COUNTRIES='cn,ru' → ['cn', 'ru']."""
        return _split_comma(self.proxy_exclude_countries)


def load_settings() -> Settings:
    """Создать Settings из переменных окружения (.env файла).

    Обязательные поля заполняет pydantic-settings, поэтому конструктор
    вызывается без аргументов.
    """
    return Settings.model_validate({})
