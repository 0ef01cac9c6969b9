"""Интерпретатор скриптовых действий: тип действия → функция-обработчик."""
import asyncio
import random
from collections.abc import Awaitable, Callable

from loguru import logger
from playwright.async_api import Page

from apl_scraper.config import Settings
from apl_scraper.engine.exceptions import ActionFailedError
from apl_scraper.models.job import ScriptedAction

TYPE_HUMAN_DELAY_MS = 100
DEFAULT_WAIT_TIME_MS = 1000

ActionHandler = Callable[[Page, ScriptedAction, Settings], Awaitable[None]]


def _require_selector(action: ScriptedAction) -> str:
    if not action.selector:
        raise ValueError("selector is required")
    return action.selector


async def _wait_present(page: Page, action: ScriptedAction, settings: Settings) -> str:
    selector = _require_selector(action)
    await page.wait_for_selector(selector, timeout=settings.action_timeout_ms)
    return selector


async def _click(page: Page, action: ScriptedAction, settings: Settings) -> None:
    selector = await _wait_present(page, action, settings)
    await page.click(selector)


async def _type(page: Page, action: ScriptedAction, settings: Settings) -> None:
    selector = await _wait_present(page, action, settings)
    await page.fill(selector, action.value or "")


async def _type_human(page: Page, action: ScriptedAction, settings: Settings) -> None:
    selector = await _wait_present(page, action, settings)
    await page.type(selector, action.value or "", delay=TYPE_HUMAN_DELAY_MS)


async def _scroll(page: Page, action: ScriptedAction, settings: Settings) -> None:
    if action.selector:
        await page.evaluate(
            """(sel) => {
                const element = document.querySelector(sel);
                if (element) element.scrollIntoView({ behavior: 'smooth', block: 'center' });
            }""",
            action.selector,
        )
    else:
        await page.evaluate("() => window.scrollBy(0, window.innerHeight)")


async def _scroll_to_bottom(page: Page, action: ScriptedAction, settings: Settings) -> None:
    await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")


async def _wait(page: Page, action: ScriptedAction, settings: Settings) -> None:
    timeout = action.wait_time if action.wait_time is not None else DEFAULT_WAIT_TIME_MS
    await page.wait_for_selector(_require_selector(action), timeout=timeout)


async def _wait_and_click(page: Page, action: ScriptedAction, settings: Settings) -> None:
    selector = _require_selector(action)
    timeout = action.wait_time if action.wait_time is not None else settings.action_timeout_ms
    await page.wait_for_selector(selector, timeout=timeout)
    await page.click(selector)


async def _hover(page: Page, action: ScriptedAction, settings: Settings) -> None:
    selector = await _wait_present(page, action, settings)
    await page.hover(selector)


async def _select(page: Page, action: ScriptedAction, settings: Settings) -> None:
    selector = await _wait_present(page, action, settings)
    await page.select_option(selector, action.value)


async def _key_press(page: Page, action: ScriptedAction, settings: Settings) -> None:
    if not action.value:
        raise ValueError("value (key) is required")
    await page.keyboard.press(action.value)


async def _wait_for_navigation(page: Page, action: ScriptedAction, settings: Settings) -> None:
    await page.wait_for_load_state("networkidle", timeout=settings.navigation_timeout_ms)


ACTION_HANDLERS: dict[str, ActionHandler] = {
    "click": _click,
    "type": _type,
    "typeHuman": _type_human,
    "scroll": _scroll,
    "scrollToBottom": _scroll_to_bottom,
    "wait": _wait,
    "waitAndClick": _wait_and_click,
    "hover": _hover,
    "select": _select,
    "keyPress": _key_press,
    "waitForNavigation": _wait_for_navigation,
}


async def human_pause(settings: Settings, rng: random.Random) -> None:
    """Случайная пауза между действиями."""
    low = settings.human_delay_min_ms
    high = max(low, settings.human_delay_max_ms)
    await asyncio.sleep(rng.uniform(low, high) / 1000)


async def execute_action(
    page: Page,
    action: ScriptedAction,
    settings: Settings,
    rng: random.Random | None = None,
) -> bool:
    """
    Выполнить одно действие.

    Returns:
        True — действие выполнено, False — неизвестный тип, пропущено.

    Raises:
        ActionFailedError: действие упало; сценарий должен прерваться.
    """
    rng = rng or random.Random()
    handler = ACTION_HANDLERS.get(action.type)

    if action.delay:
        await asyncio.sleep(action.delay / 1000)

    try:
        if handler is None:
            logger.warning(f"Unknown action type: {action.type!r}, skipping")
            return False

        logger.debug(f"Executing action: {action.type} on {action.selector}")
        try:
            await handler(page, action, settings)
        except Exception as e:
            logger.warning(f"Action failed: {action.type} on {action.selector} - {e}")
            raise ActionFailedError(action.type, action.selector, str(e)) from e
        return True
    finally:
        await human_pause(settings, rng)


async def run_actions(
    page: Page,
    actions: list[ScriptedAction],
    settings: Settings,
    rng: random.Random | None = None,
) -> int:
    """Выполнить сценарий по порядку. Возвращает число выполненных действий."""
    executed = 0
    for action in actions:
        if await execute_action(page, action, settings, rng):
            executed += 1
    return executed
