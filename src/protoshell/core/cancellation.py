"""Cooperative cancellation passed through awaited calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

T = TypeVar("T")


class CancellationToken:
    """A one-shot cancellation flag with callbacks.

    Holders check `cancelled` at their yield points; `guard` additionally
    stops waiting on an awaitable as soon as the token fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Fire the token. Returns False when it had already fired."""
        if self._event.is_set():
            return False
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("cancellation.callback.error")
        return True

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        if self._event.is_set():
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await the given awaitable unless the token fires first."""
        fut = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        waiter.add_done_callback(lambda _: fut.cancel())
        try:
            return await fut
        finally:
            waiter.cancel()
