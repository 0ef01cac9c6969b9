"""Пул прокси: round-robin выбор, карантин, health-check, авто-отключение."""
import asyncio
import random
import time
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger
from supabase import Client

from apl_scraper.config import Settings
from apl_scraper.database import (
    fetch_active_proxies,
    fetch_all_proxies,
    fetch_proxy,
    sanitize_error,
    update_proxy,
)
from apl_scraper.models.proxy import Proxy
from apl_scraper.proxy.reliability import apply_request_outcome


class ProxyManager:
    """
    Выдаёт рабочий прокси и следит за его надёжностью.

    Локальный набор failed_proxies — карантин: прокси из него не выдаются,
    пока успешный запрос или health-check не вернёт их обратно. Набор
    сбрасывается при каждом load_proxies() и когда в карантине оказались все.

    Курсор и карантин меняются под self._lock — выбор безопасен для
    конкурентных воркеров. Обновление счётчиков в БД — read-modify-write
    под локом конкретного прокси, чтобы не терять инкременты внутри процесса.
    """

    HEALTH_SWEEP_JOB_ID = "proxy_health_sweep"

    def __init__(
        self,
        db: Client,
        settings: Settings,
        scheduler: AsyncIOScheduler | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self.scheduler = scheduler
        self.rng = rng or random.Random()
        self.proxies: list[Proxy] = []
        self.current_index = -1
        self.failed_proxies: set[str] = set()
        self._lock = asyncio.Lock()
        self._update_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_fallback_at: float | None = None
        self._recheck_handles: dict[str, asyncio.TimerHandle] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # --- загрузка ---------------------------------------------------------

    async def load_proxies(self) -> list[Proxy]:
        """Загрузить активные прокси (лучшие первыми) и сбросить карантин.

        При ошибке БД список становится пустым — select_next вернёт None.
        """
        try:
            rows = await fetch_active_proxies(self.db)
            proxies = [Proxy.model_validate(row) for row in rows]
        except Exception as e:
            logger.error(f"Error loading proxies: {sanitize_error(str(e))}")
            proxies = []

        async with self._lock:
            self.proxies = proxies
            self.current_index = -1
            self.failed_proxies.clear()

        logger.info(f"Loaded {len(proxies)} active proxies")
        return list(proxies)

    async def refresh(self) -> int:
        """Перечитать список прокси. Возвращает количество."""
        logger.info("Refreshing proxy list...")
        proxies = await self.load_proxies()
        return len(proxies)

    def available_count(self) -> int:
        """Прокси вне карантина."""
        return sum(1 for p in self.proxies if p.id not in self.failed_proxies)

    # --- выбор ------------------------------------------------------------

    def _is_low_quality(self, proxy: Proxy) -> bool:
        return (
            proxy.success_rate < self.settings.proxy_skip_success_rate
            and proxy.total_requests > self.settings.proxy_skip_min_requests
        )

    def _pick_locked(self, exclude_countries: set[str]) -> tuple[Proxy | None, float]:
        """Round-robin выбор под локом. Возвращает (прокси, пауза перед выдачей)."""
        if not self.proxies:
            logger.warning("No proxies available")
            return None, 0.0

        max_attempts = len(self.proxies) * 2
        for _ in range(max_attempts):
            self.current_index = (self.current_index + 1) % len(self.proxies)
            proxy = self.proxies[self.current_index]

            if proxy.id in self.failed_proxies:
                continue
            if proxy.country in exclude_countries:
                continue
            if self._is_low_quality(proxy):
                continue

            logger.debug(
                f"Selected proxy {proxy.label} ({proxy.country}, "
                f"{proxy.success_rate * 100:.1f}% success)"
            )
            return proxy, 0.0

        # Все в карантине: сбросить карантин и отдать лучший
        if all(p.id in self.failed_proxies for p in self.proxies):
            logger.warning("All proxies failed, resetting failed list")
            self.failed_proxies.clear()
            best = max(self.proxies, key=lambda p: p.success_rate)

            # Повторный fallback не чаще раза в proxy_fallback_cooldown_seconds
            now = time.monotonic()
            wait = 0.0
            cooldown = self.settings.proxy_fallback_cooldown_seconds
            if self._last_fallback_at is not None:
                wait = max(0.0, cooldown - (now - self._last_fallback_at))
            self._last_fallback_at = now + wait
            return best, wait

        logger.debug("No proxy matches selection rules")
        return None, 0.0

    async def select_next(self, exclude_countries: set[str] | None = None) -> Proxy | None:
        """Следующий подходящий прокси или None."""
        async with self._lock:
            proxy, wait = self._pick_locked(set(exclude_countries or ()))

        if wait > 0:
            logger.info(f"Fallback proxy throttled, waiting {wait:.1f}s")
            await asyncio.sleep(wait)
        return proxy

    async def select_by_country(self, country_code: str) -> Proxy | None:
        """Лучший (по success_rate) прокси страны вне карантина."""
        async with self._lock:
            candidates = [
                p for p in self.proxies
                if p.country == country_code and p.id not in self.failed_proxies
            ]
        if not candidates:
            logger.info(f"No available proxies for country: {country_code}")
            return None
        return max(candidates, key=lambda p: p.success_rate)

    # --- отчёты -----------------------------------------------------------

    async def report_failure(self, proxy_id: str, reason: str) -> None:
        """Карантин сразу, затем счётчики в БД и отложенная перепроверка."""
        # До первого await: следующий select_next уже не выдаст этот прокси
        self.failed_proxies.add(proxy_id)
        logger.warning(f"Marking proxy {proxy_id} as failed: {sanitize_error(reason)}")

        await self.update_reliability(proxy_id, success=False)
        self.schedule_recheck(proxy_id)

    async def report_success(self, proxy_id: str, response_time_ms: float = 0) -> None:
        """Снять карантин и учесть успешный запрос."""
        self.failed_proxies.discard(proxy_id)
        await self.update_reliability(proxy_id, success=True, response_time_ms=response_time_ms)

    async def update_reliability(
        self,
        proxy_id: str,
        success: bool,
        response_time_ms: float | None = None,
    ) -> dict[str, Any] | None:
        """
        Read-modify-write счётчиков прокси в proxy_list.
        Возвращает новые значения или None при ошибке — ошибка логируется,
        задача, которой прокси уже отслужил, от неё не падает.
        """
        try:
            async with self._update_locks[proxy_id]:
                row = await fetch_proxy(self.db, proxy_id)
                if row is None:
                    logger.warning(f"Proxy {proxy_id} not found for reliability update")
                    return None

                stats = apply_request_outcome(
                    row,
                    success,
                    response_time_ms,
                    disable_min_requests=self.settings.proxy_disable_min_requests,
                    disable_success_rate=self.settings.proxy_disable_success_rate,
                )
                await update_proxy(self.db, proxy_id, stats)
        except Exception as e:
            logger.error(f"Error updating proxy {proxy_id} reliability: {sanitize_error(str(e))}")
            return None

        if stats.get("status") == "disabled":
            logger.warning(f"Auto-disabling proxy {proxy_id} due to low success rate")
        logger.debug(f"Updated proxy {proxy_id} stats: {stats['success_rate'] * 100:.1f}% success rate")
        await self._apply_local_stats(proxy_id, stats)
        return stats

    async def _apply_local_stats(self, proxy_id: str, stats: dict[str, Any]) -> None:
        """Синхронизировать in-memory копию прокси с записанными счётчиками."""
        async with self._lock:
            if stats.get("status") == "disabled":
                self.proxies = [p for p in self.proxies if p.id != proxy_id]
                self.failed_proxies.discard(proxy_id)
                if self.proxies:
                    self.current_index %= len(self.proxies)
                else:
                    self.current_index = -1
                return

            for i, proxy in enumerate(self.proxies):
                if proxy.id == proxy_id:
                    local = {k: v for k, v in stats.items() if k != "last_used"}
                    self.proxies[i] = proxy.model_copy(update=local)
                    break

    # --- health-check -----------------------------------------------------

    def schedule_recheck(self, proxy_id: str) -> None:
        """Одиночная перепроверка прокси через proxy_quarantine_minutes."""
        delay = self.settings.proxy_quarantine_minutes * 60
        if self.scheduler is not None:
            self.scheduler.add_job(
                self.check_proxy_health,
                "date",
                run_date=datetime.now(UTC) + timedelta(seconds=delay),
                args=[proxy_id],
                id=f"proxy_recheck:{proxy_id}",
                replace_existing=True,
            )
            return

        loop = asyncio.get_running_loop()
        previous = self._recheck_handles.pop(proxy_id, None)
        if previous is not None:
            previous.cancel()
        self._recheck_handles[proxy_id] = loop.call_later(
            delay, self._spawn_recheck, proxy_id,
        )

    def _spawn_recheck(self, proxy_id: str) -> None:
        self._recheck_handles.pop(proxy_id, None)
        task = asyncio.create_task(self.check_proxy_health(proxy_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def probe(self, proxy: Proxy) -> float:
        """Лёгкий запрос через прокси. Возвращает время ответа в мс."""
        started = time.monotonic()
        async with httpx.AsyncClient(
            proxy=proxy.to_url(), timeout=self.settings.proxy_probe_timeout,
        ) as client:
            response = await client.get(self.settings.proxy_probe_url)
            response.raise_for_status()
        return (time.monotonic() - started) * 1000

    async def check_proxy_health(self, proxy_id: str) -> bool:
        """Проверить один прокси; результат идёт в report_success / report_failure."""
        proxy = next((p for p in self.proxies if p.id == proxy_id), None)
        if proxy is None:
            return False

        logger.debug(f"Health checking proxy {proxy.label}")
        try:
            response_time = await self.probe(proxy)
        except Exception as e:
            await self.report_failure(proxy_id, f"Health check failed: {e}")
            logger.info(f"Proxy {proxy.label} health check failed: {sanitize_error(str(e))}")
            return False

        await self.report_success(proxy_id, response_time)
        logger.info(f"Proxy {proxy.label} is healthy ({response_time:.0f}ms)")
        return True

    async def run_health_sweep(self) -> int:
        """Проверить случайную выборку прокси. Возвращает число здоровых."""
        async with self._lock:
            proxies = list(self.proxies)
        if not proxies:
            return 0
        size = min(self.settings.proxy_health_sample_size, len(proxies))
        sample = self.rng.sample(proxies, size)
        logger.info(f"Running proxy health checks on {size} proxies...")

        healthy = 0
        for proxy in sample:
            if await self.check_proxy_health(proxy.id):
                healthy += 1
        return healthy

    def start(self) -> None:
        """Зарегистрировать периодический health-sweep в планировщике."""
        if self.scheduler is None:
            return
        self.scheduler.add_job(
            self.run_health_sweep,
            "interval",
            minutes=self.settings.proxy_health_interval_minutes,
            id=self.HEALTH_SWEEP_JOB_ID,
            replace_existing=True,
        )
        logger.info("Proxy health monitoring started")

    def cleanup(self) -> None:
        """Снять отложенные перепроверки (при shutdown)."""
        for handle in self._recheck_handles.values():
            handle.cancel()
        self._recheck_handles.clear()
        if self.scheduler is not None and self.scheduler.get_job(self.HEALTH_SWEEP_JOB_ID):
            self.scheduler.remove_job(self.HEALTH_SWEEP_JOB_ID)

    # --- статистика -------------------------------------------------------

    async def stats(self) -> dict[str, Any]:
        """Сводка по всем прокси в БД + локальный карантин."""
        rows = await fetch_all_proxies(self.db)
        total = len(rows)
        by_country: dict[str, int] = defaultdict(int)
        by_type: dict[str, int] = defaultdict(int)
        for row in rows:
            by_country[row.get("country") or "unknown"] += 1
            by_type[row.get("type") or "http"] += 1

        return {
            "total": total,
            "active": sum(1 for r in rows if r.get("status") == "active"),
            "disabled": sum(1 for r in rows if r.get("status") == "disabled"),
            "failed": len(self.failed_proxies),
            "available": self.available_count(),
            "avg_success_rate": (
                sum(float(r.get("success_rate") or 0) for r in rows) / total if total else 0.0
            ),
            "avg_response_time": (
                sum(float(r.get("response_time_ms") or 0) for r in rows) / total if total else 0.0
            ),
            "by_country": dict(by_country),
            "by_type": dict(by_type),
        }

    @staticmethod
    def get_playwright_proxy(proxy: Proxy | None) -> dict[str, str] | None:
        """Формат proxy для Playwright или None."""
        return proxy.to_playwright() if proxy else None
