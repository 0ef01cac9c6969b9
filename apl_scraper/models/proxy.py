"""Pydantic-модель прокси из таблицы proxy_list."""
from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class Proxy(BaseModel):
    """Точка выхода с накопленной статистикой надёжности."""

    id: str
    host: str
    port: int
    username: str | None = None
    password: str | None = None
    type: str = "http"              # http | https | socks5
    country: str | None = None
    provider: str | None = None
    status: Literal["active", "disabled"] = "active"
    success_rate: float = 0.0
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    response_time_ms: float = 0.0
    last_used: datetime | None = None
    last_status: str | None = None

    @property
    def label(self) -> str:
        """host:port для логов (без кредов)."""
        return f"{self.host}:{self.port}"

    def to_url(self) -> str:
        """URL прокси для httpx."""
        if self.username and self.password:
            return f"{self.type}://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"{self.type}://{self.host}:{self.port}"

    def to_playwright(self) -> dict[str, str]:
        """Формат proxy для browser.new_context()."""
        config = {"server": f"{self.type}://{self.host}:{self.port}"}
        if self.username and self.password:
            config["username"] = self.username
            config["password"] = self.password
        return config
