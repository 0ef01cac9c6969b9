"""Playwright-движок: один изолированный контекст браузера на один запуск."""
import random
import time
from typing import Any

from loguru import logger
from playwright.async_api import BrowserContext, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from apl_scraper.config import Settings
from apl_scraper.engine.actions import run_actions
from apl_scraper.engine.browser import BrowserPool
from apl_scraper.engine.exceptions import (
    NavigationError,
    NavigationTimeoutError,
    ScraperError,
)
from apl_scraper.engine.extractors import extract_default, run_extractors
from apl_scraper.engine.stealth import Fingerprint, generate_fingerprint
from apl_scraper.models.job import JobConfig, ScrapeResult


class PlaywrightScraper:
    """
    Сессия скрапинга одной задачи.

    Uninitialized → SessionOpen → Navigated → ActionsRunning →
    ExtractionRunning → Closed. Closed достигается на любом пути:
    scrape() закрывает контекст сам, close() можно звать повторно.
    """

    def __init__(
        self,
        browser_pool: BrowserPool,
        settings: Settings,
        proxy: dict[str, str] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.browser_pool = browser_pool
        self.settings = settings
        self.proxy = proxy
        self.rng = rng or random.Random()
        self.fingerprint: Fingerprint = generate_fingerprint(self.rng)
        self._context: BrowserContext | None = None
        self.closed = False

    async def scrape(self, config: JobConfig) -> ScrapeResult:
        """Выполнить сценарий. Исключения наружу не выходят — только ScrapeResult."""
        started = time.monotonic()
        logger.info(f"Starting scrape for: {config.url}")

        try:
            page = await self._open_page()
            data = await self._run(page, config)
            screenshot = await self._screenshot(page) if config.take_screenshot else None
        except Exception as e:
            duration = int((time.monotonic() - started) * 1000)
            error_type = type(e).__name__ if isinstance(e, ScraperError) else "ScraperError"
            logger.error(f"Scraping failed for {config.url}: {e}")
            return ScrapeResult(
                success=False,
                error=str(e) or error_type,
                error_type=error_type,
                duration_ms=duration,
            )
        finally:
            await self.close()

        duration = int((time.monotonic() - started) * 1000)
        logger.info(f"Scraping completed successfully for: {config.url} ({duration}ms)")
        return ScrapeResult(success=True, data=data, screenshot=screenshot, duration_ms=duration)

    async def _open_page(self) -> Page:
        self._context = await self.browser_pool.new_context(self.fingerprint, self.proxy)
        return await self._context.new_page()

    async def _run(self, page: Page, config: JobConfig) -> dict[str, Any]:
        await self._navigate(page, config)

        if config.actions:
            logger.debug(f"Executing {len(config.actions)} actions")
            await run_actions(page, config.actions, self.settings, self.rng)

        if config.wait_for:
            logger.debug(f"Waiting for selector: {config.wait_for}")
            try:
                await page.wait_for_selector(
                    config.wait_for, timeout=self.settings.wait_for_timeout_ms,
                )
            except PlaywrightTimeoutError as e:
                raise ScraperError(f"Selector {config.wait_for!r} did not appear") from e

        if config.extractors:
            logger.debug(f"Extracting data using {len(config.extractors)} extractors")
            return await run_extractors(page, config.extractors, self.settings)
        return await extract_default(page, self.settings)

    async def _navigate(self, page: Page, config: JobConfig) -> None:
        timeout = config.timeout or self.settings.navigation_timeout_ms
        try:
            await page.goto(config.url, wait_until="networkidle", timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeoutError(
                f"Navigation to {config.url} timed out after {timeout}ms"
            ) from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation to {config.url} failed: {e.message}") from e
        logger.debug(f"Page loaded: {config.url}")

    async def _screenshot(self, page: Page) -> bytes | None:
        """Полностраничный PNG; ошибка скриншота не отменяет извлечённые данные."""
        try:
            return await page.screenshot(full_page=True, type="png")
        except PlaywrightError as e:
            logger.warning(f"Screenshot failed: {e.message}")
            return None

    async def close(self) -> None:
        """Закрыть контекст. Повторный вызов — no-op."""
        if self.closed:
            return
        self.closed = True
        context, self._context = self._context, None
        if context is None:
            return
        try:
            await context.close()
        except Exception as e:
            logger.warning(f"Error closing browser context: {e}")
