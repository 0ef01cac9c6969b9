"""Общий процесс Chromium: запускается лениво, живёт до shutdown."""
import asyncio

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from apl_scraper.config import Settings
from apl_scraper.engine.exceptions import SessionInitError
from apl_scraper.engine.stealth import LAUNCH_ARGS, Fingerprint


class BrowserPool:
    """
    Владелец одного процесса браузера на весь пайплайн.

    Каждая задача получает собственный BrowserContext (свои cookies, storage,
    fingerprint и прокси) и обязана закрыть его сама.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def get_browser(self) -> Browser:
        """Запустить браузер при первом обращении (или после падения)."""
        async with self._lock:
            if self.is_running:
                assert self._browser is not None
                return self._browser

            await self._shutdown_locked()
            try:
                self._playwright = await async_playwright().start()
                # Без proxy на уровне процесса: контекст без своего proxy идёт напрямую
                self._browser = await self._playwright.chromium.launch(
                    headless=self.settings.headless,
                    args=LAUNCH_ARGS,
                )
            except Exception as e:
                await self._shutdown_locked()
                raise SessionInitError(f"Browser launch failed: {e}") from e

            logger.info("Browser launched")
            return self._browser

    async def new_context(
        self,
        fingerprint: Fingerprint,
        proxy: dict[str, str] | None = None,
    ) -> BrowserContext:
        """Изолированный контекст с fingerprint и stealth-скриптом."""
        browser = await self.get_browser()
        try:
            context = await browser.new_context(**fingerprint.context_options(proxy))
        except Exception as e:
            raise SessionInitError(f"Browser context init failed: {e}") from e

        try:
            await context.add_init_script(fingerprint.init_script())
        except Exception as e:
            try:
                await context.close()
            except Exception as close_error:
                logger.warning(f"Error closing context after init failure: {close_error}")
            raise SessionInitError(f"Browser context init failed: {e}") from e
        return context

    async def _shutdown_locked(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

    async def close(self) -> None:
        """Закрыть браузер и драйвер Playwright."""
        async with self._lock:
            was_running = self._browser is not None
            await self._shutdown_locked()
        if was_running:
            logger.info("Browser closed")
