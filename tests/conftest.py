"""Общие хелперы тестов."""
from typing import Any
from unittest.mock import MagicMock


def make_settings(**overrides: Any):
    """Настоящий Settings без .env, с нулевыми «человеческими» паузами."""
    from apl_scraper.config import Settings

    values: dict[str, Any] = {
        "supabase_url": "https://test.supabase.co",
        "supabase_service_key": "service-key",
        "scraper_api_key": "sk-test-key",
        "human_delay_min_ms": 0,
        "human_delay_max_ms": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def mock_supabase():
    """Мок Supabase client с цепочкой table().<filter>().execute() и rpc()."""
    db = MagicMock()
    table_mock = MagicMock()
    db.table.return_value = table_mock
    for method in ("update", "insert", "select", "eq", "lt", "order", "limit", "delete"):
        getattr(table_mock, method).return_value = table_mock
    table_mock.execute.return_value = MagicMock(data=[], count=0)
    rpc_mock = MagicMock()
    db.rpc.return_value = rpc_mock
    rpc_mock.execute.return_value = MagicMock(data=[])
    return db
