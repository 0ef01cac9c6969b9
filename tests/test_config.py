"""Тесты конфигурации пайплайна."""
import pytest

from apl_scraper.config import _split_comma


def _set_required_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "test-key")
    monkeypatch.setenv("SCRAPER_API_KEY", "api-key")


class TestSplitComma:
    """Тесты парсера строки через запятую."""

    def test_normal_split(self) -> None:
        assert _split_comma("cn,ru") == ["cn", "ru"]

    def test_strips_whitespace(self) -> None:
        assert _split_comma(" cn , ru ") == ["cn", "ru"]

    def test_empty_string(self) -> None:
        assert _split_comma("") == []

    def test_empty_items(self) -> None:
        assert _split_comma("cn,,ru,") == ["cn", "ru"]


class TestSettings:
    """Тесты парсинга Settings из env."""

    def test_minimal_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Минимальный набор обязательных переменных."""
        _set_required_env(monkeypatch)

        from apl_scraper.config import Settings

        s = Settings()
        assert s.supabase_url == "https://test.supabase.co"
        assert s.supabase_service_key.get_secret_value() == "test-key"
        assert s.scraper_api_key.get_secret_value() == "api-key"

    def test_pipeline_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Дефолты очереди, прокси и браузера."""
        _set_required_env(monkeypatch)

        from apl_scraper.config import Settings

        s = Settings()
        assert s.worker_concurrency == 3
        assert s.rate_limit_max == 10
        assert s.rate_limit_window_seconds == 60.0
        assert s.queue_max_attempts == 3
        assert s.queue_backoff_base_ms == 2000
        assert s.bulk_stagger_ms == 1000
        assert s.proxy_disable_min_requests == 20
        assert s.proxy_disable_success_rate == 0.1
        assert s.proxy_quarantine_minutes == 5
        assert s.proxy_health_interval_minutes == 10
        assert s.proxy_health_sample_size == 5
        assert s.action_timeout_ms == 5000
        assert s.wait_for_timeout_ms == 10000

    def test_thresholds_overridable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Пороги авто-отключения и карантина настраиваются через env."""
        _set_required_env(monkeypatch)
        monkeypatch.setenv("PROXY_DISABLE_MIN_REQUESTS", "50")
        monkeypatch.setenv("PROXY_QUARANTINE_MINUTES", "1")
        monkeypatch.setenv("WORKER_CONCURRENCY", "8")

        from apl_scraper.config import Settings

        s = Settings()
        assert s.proxy_disable_min_requests == 50
        assert s.proxy_quarantine_minutes == 1
        assert s.worker_concurrency == 8

    def test_exclude_countries_parsing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _set_required_env(monkeypatch)
        monkeypatch.setenv("PROXY_EXCLUDE_COUNTRIES", "CN, RU")

        from apl_scraper.config import Settings

        s = Settings()
        assert s.proxy_exclude_countries_list == ["CN", "RU"]

    def test_port_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """PORT принимается как синоним SCRAPER_PORT."""
        _set_required_env(monkeypatch)
        monkeypatch.delenv("SCRAPER_PORT", raising=False)
        monkeypatch.setenv("PORT", "9000")

        from apl_scraper.config import Settings

        assert Settings().scraper_port == 9000

    def test_missing_required_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)
        monkeypatch.delenv("SCRAPER_API_KEY", raising=False)

        from pydantic import ValidationError

        from apl_scraper.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
