"""
Cancellation primitives shared by both transports.

A ``CancellationToken`` is the in-process signal for one generation. Every
abort is correlated with the token that requested it: ``GenerationCancelled``
is only raised by ``iterate_until_cancelled`` for its own token, so an
abort-looking exception coming out of a transport for some other reason is
never mistaken for a user cancellation.
"""

from typing import AsyncIterator, Callable, List, Optional, TypeVar
import asyncio
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class GenerationCancelled(Exception):
    """A generation stopped because this system asked it to. Not an error."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "Generation cancelled")
        self.reason = reason


class CancellationToken:
    """One-shot, idempotent cancellation signal"""

    def __init__(self):
        self._event = asyncio.Event()
        self._callbacks: List[Callable[[], None]] = []
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "requested") -> bool:
        """Raise the signal. Returns False if it was already raised."""

        if self._event.is_set():
            return False

        self.reason = reason
        self._event.set()

        for callback in self._callbacks:
            callback()
        self._callbacks.clear()
        return True

    def add_callback(self, callback: Callable[[], None]):
        """Run ``callback`` on cancellation, immediately if already cancelled"""

        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self.cancelled:
            raise GenerationCancelled(self.reason)


_EXHAUSTED = object()


async def _next_item(iterator: AsyncIterator[T]):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


async def _settle(task: "asyncio.Task") -> None:
    """Wait for a cancelled pull from the source to unwind"""

    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        # The token already decided the outcome, this is teardown noise
        logger.debug("Source raised while being torn down", error=str(e))


async def iterate_until_cancelled(source: AsyncIterator[T], token: CancellationToken) -> AsyncIterator[T]:
    """
    Yield from ``source`` until it ends or ``token`` is cancelled.

    Each pull from the source races the token. When the token wins, the
    pending pull is cancelled, the source is closed (which tears down its
    connection or subprocess) and ``GenerationCancelled`` is raised.
    """

    iterator = source.__aiter__()
    cancel_waiter = asyncio.ensure_future(token.wait())
    pending: Optional[asyncio.Task] = None

    try:
        while True:
            token.raise_if_cancelled()

            pending = asyncio.ensure_future(_next_item(iterator))
            await asyncio.wait({pending, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)

            if token.cancelled:
                pending.cancel()
                await _settle(pending)
                pending = None
                raise GenerationCancelled(token.reason)

            item = pending.result()
            pending = None
            if item is _EXHAUSTED:
                return

            yield item
    finally:
        cancel_waiter.cancel()
        if pending is not None and not pending.done():
            pending.cancel()
            await _settle(pending)

        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
