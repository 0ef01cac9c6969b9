"""Исключения движка скрапинга."""


class ScraperError(Exception):
    """Общая ошибка скрапинга."""


class SessionInitError(ScraperError):
    """Не удалось запустить браузер или открыть контекст."""


class NavigationError(ScraperError):
    """Страница не открылась."""


class NavigationTimeoutError(NavigationError):
    """Навигация не уложилась в таймаут."""


class ActionFailedError(ScraperError):
    """Действие сценария упало — остальные действия и задача прерываются."""

    def __init__(self, action_type: str, selector: str | None, detail: str = "") -> None:
        self.action_type = action_type
        self.selector = selector
        super().__init__(f"Action '{action_type}' failed on {selector or '<page>'}: {detail}")


class ExtractionError(ScraperError):
    """Ошибка одного экстрактора — поле получает None / []."""
