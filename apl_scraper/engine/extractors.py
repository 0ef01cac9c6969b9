"""Извлечение полей со страницы: тип экстрактора → функция-обработчик."""
import asyncio
import math
import re
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from playwright.async_api import ElementHandle, Page

from apl_scraper.config import Settings
from apl_scraper.engine.exceptions import ExtractionError
from apl_scraper.models.job import Extractor

HTTP_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

# Контейнеры основного контента, по убыванию приоритета
CONTENT_SELECTORS = [
    "main",
    '[role="main"]',
    ".main-content",
    "#main-content",
    ".content",
    "#content",
    "article",
    ".article",
    ".post-content",
    ".entry-content",
]
MIN_CONTENT_LENGTH = 100
MAX_LINKS = 50
MAX_IMAGES = 20

_LINKS_JS = """(links) => links.map(link => ({
    text: (link.textContent || '').trim(),
    href: link.href,
    title: link.title || ''
}))"""

_IMAGES_JS = """(images) => images.map(img => ({
    src: img.src,
    alt: img.alt || '',
    title: img.title || '',
    width: img.width || 0,
    height: img.height || 0
}))"""

ExtractorHandler = Callable[[Page, Extractor], Awaitable[Any]]


async def _first(page: Page, extractor: Extractor) -> ElementHandle:
    element = await page.query_selector(extractor.selector)
    if element is None:
        raise ExtractionError(f"No element matches {extractor.selector!r}")
    return element


async def _text(page: Page, extractor: Extractor) -> Any:
    if extractor.multiple:
        elements = await page.query_selector_all(extractor.selector)
        texts = [((await el.text_content()) or "").strip() for el in elements]
        return [t for t in texts if t]
    element = await _first(page, extractor)
    return ((await element.text_content()) or "").strip()


async def _html(page: Page, extractor: Extractor) -> Any:
    if extractor.multiple:
        elements = await page.query_selector_all(extractor.selector)
        return [await el.inner_html() for el in elements]
    element = await _first(page, extractor)
    return await element.inner_html()


async def _attribute(page: Page, extractor: Extractor) -> Any:
    if not extractor.attribute:
        raise ExtractionError("attribute extractor requires 'attribute'")
    if extractor.multiple:
        elements = await page.query_selector_all(extractor.selector)
        values = [await el.get_attribute(extractor.attribute) for el in elements]
        return [v for v in values if v is not None]
    element = await _first(page, extractor)
    return await element.get_attribute(extractor.attribute)


def _url_extractor(attr: str) -> ExtractorHandler:
    """href / src: коллекция — только абсолютные http(s) URL."""

    async def handler(page: Page, extractor: Extractor) -> Any:
        if extractor.multiple:
            elements = await page.query_selector_all(extractor.selector)
            values = [await el.get_attribute(attr) for el in elements]
            return [v for v in values if v and HTTP_URL_RE.match(v)]
        element = await _first(page, extractor)
        # Свойство DOM уже содержит абсолютный URL
        return await element.evaluate(f"el => el.{attr}")

    return handler


async def _count(page: Page, extractor: Extractor) -> int:
    return len(await page.query_selector_all(extractor.selector))


async def _exists(page: Page, extractor: Extractor) -> bool:
    return await page.query_selector(extractor.selector) is not None


EXTRACTOR_HANDLERS: dict[str, ExtractorHandler] = {
    "text": _text,
    "html": _html,
    "attribute": _attribute,
    "href": _url_extractor("href"),
    "src": _url_extractor("src"),
    "count": _count,
    "exists": _exists,
}


def _to_number(value: Any) -> int | float:
    """Строгий парсинг числа; всё, что не число целиком, → 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int | float):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return 0
    if not math.isfinite(number):
        return 0
    return int(number) if number.is_integer() else number


def _string_transform(func: Callable[[str], str]) -> Callable[[Any], Any]:
    def apply(value: Any) -> Any:
        return func(value) if isinstance(value, str) else value

    return apply


_TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "lowercase": _string_transform(str.lower),
    "uppercase": _string_transform(str.upper),
    "trim": _string_transform(str.strip),
    "number": _to_number,
}


def apply_transform(value: Any, transform: str | None) -> Any:
    """Применить transform к скаляру или к каждому элементу списка.

    Пустой результат ('' / [] / None / 0 / False) остаётся как есть.
    """
    if not transform or not value:
        return value
    func = _TRANSFORMS.get(transform)
    if func is None:
        logger.warning(f"Unknown transform: {transform!r}, ignoring")
        return value
    if isinstance(value, list):
        return [func(item) for item in value]
    return func(value)


async def extract_field(page: Page, extractor: Extractor, settings: Settings) -> Any:
    """
    Значение одного поля.

    Raises:
        ExtractionError: селектор не найден, таймаут или ошибка DOM.
    """
    handler = EXTRACTOR_HANDLERS.get(extractor.type)
    if handler is None:
        logger.debug(f"Unknown extractor type {extractor.type!r}, falling back to text")
        handler = _text
    if not extractor.selector:
        raise ExtractionError(f"Extractor {extractor.name!r} has no selector")

    try:
        result = await asyncio.wait_for(
            handler(page, extractor),
            timeout=settings.extraction_timeout_ms / 1000,
        )
    except ExtractionError:
        raise
    except TimeoutError as e:
        raise ExtractionError(f"Timed out extracting {extractor.selector!r}") from e
    except Exception as e:
        raise ExtractionError(str(e)) from e

    return apply_transform(result, extractor.transform)


async def run_extractors(
    page: Page,
    extractors: list[Extractor],
    settings: Settings,
) -> dict[str, Any]:
    """Все экстракторы независимо: упавшее поле → None (или [] для multiple)."""
    data: dict[str, Any] = {}
    for extractor in extractors:
        try:
            data[extractor.name] = await extract_field(page, extractor, settings)
        except ExtractionError as e:
            logger.warning(f"Extraction failed for {extractor.name}: {e}")
            data[extractor.name] = [] if extractor.multiple else None
    return data


# --- извлечение по умолчанию ------------------------------------------------


async def extract_main_content(page: Page, settings: Settings) -> str:
    """Текст первого контейнера длиннее MIN_CONTENT_LENGTH, иначе текст body."""
    timeout = settings.extraction_timeout_ms / 1000
    for selector in CONTENT_SELECTORS:
        try:
            element = await asyncio.wait_for(page.query_selector(selector), timeout)
            if element is None:
                continue
            content = ((await asyncio.wait_for(element.text_content(), timeout)) or "").strip()
        except Exception:
            continue
        if len(content) > MIN_CONTENT_LENGTH:
            return content

    try:
        body = await asyncio.wait_for(page.query_selector("body"), timeout)
        if body is None:
            return ""
        return ((await asyncio.wait_for(body.text_content(), timeout)) or "").strip()
    except Exception as e:
        logger.debug(f"Body text extraction failed: {e}")
        return ""


async def extract_links(page: Page, settings: Settings) -> list[dict[str, Any]]:
    try:
        links = await asyncio.wait_for(
            page.eval_on_selector_all("a[href]", _LINKS_JS),
            settings.extraction_timeout_ms / 1000,
        )
    except Exception as e:
        logger.debug(f"Link extraction failed: {e}")
        return []
    return [link for link in links if HTTP_URL_RE.match(link.get("href") or "")][:MAX_LINKS]


async def extract_images(page: Page, settings: Settings) -> list[dict[str, Any]]:
    try:
        images = await asyncio.wait_for(
            page.eval_on_selector_all("img[src]", _IMAGES_JS),
            settings.extraction_timeout_ms / 1000,
        )
    except Exception as e:
        logger.debug(f"Image extraction failed: {e}")
        return []
    return [img for img in images if HTTP_URL_RE.match(img.get("src") or "")][:MAX_IMAGES]


async def extract_default(page: Page, settings: Settings) -> dict[str, Any]:
    """title, url, основной текст, ссылки и картинки."""
    return {
        "title": await page.title(),
        "url": page.url,
        "content": await extract_main_content(page, settings),
        "links": await extract_links(page, settings),
        "images": await extract_images(page, settings),
    }
