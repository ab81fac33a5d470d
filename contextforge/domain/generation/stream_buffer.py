from typing import Callable
import time


class ThrottledBuffer:
    """
    Accumulates streamed text and says when it is time to flush.

    Flushing on every token would turn each token into a write; instead text
    is held until ``interval_seconds`` have passed since the last flush.
    """

    def __init__(self, interval_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._buffer = ""
        self._last_flush = clock()

    @property
    def pending(self) -> str:
        return self._buffer

    def add(self, text: str):
        self._buffer += text

    def due(self) -> bool:
        """True when there is text and the throttle interval has elapsed"""

        if not self._buffer:
            return False
        return self._clock() - self._last_flush >= self.interval_seconds

    def drain(self) -> str:
        """Take everything buffered and restart the interval"""

        text, self._buffer = self._buffer, ""
        self._last_flush = self._clock()
        return text
