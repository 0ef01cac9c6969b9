"""Глобальный лимит диспатча: не больше N задач за скользящее окно."""
import time
from collections import deque
from collections.abc import Callable


class SlidingWindowRateLimiter:
    """
    Скользящее окно по временам диспатчей.

    delay_until_slot() только сообщает, сколько ждать, record() занимает место:
    так пустой опрос очереди не расходует лимит.
    """

    def __init__(
        self,
        max_events: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_events < 1:
            raise ValueError("max_events must be >= 1")
        self.max_events = max_events
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: deque[float] = deque()

    def _prune(self, now: float) -> None:
        window_start = now - self.window_seconds
        while self._events and self._events[0] <= window_start:
            self._events.popleft()

    def delay_until_slot(self) -> float:
        """Сколько секунд ждать до свободного места (0 — можно сейчас)."""
        now = self._clock()
        self._prune(now)
        if len(self._events) < self.max_events:
            return 0.0
        return max(0.0, self._events[0] + self.window_seconds - now)

    def record(self) -> None:
        now = self._clock()
        self._prune(now)
        self._events.append(now)

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._events)
