"""Cancellation token shared by every suspension point of one request."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from .errors import RequestCancelledError

DEFAULT_CANCEL_REASON = "Request cancelled"


class CancellationToken:
    """One-shot cancellation signal.

    The rate-limit wait, the retry backoff and the streaming receive loop all
    observe the same token. Callbacks registered with :meth:`add_callback`
    run exactly once, on the first call to :meth:`cancel` (or immediately if
    the token is already cancelled).
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = DEFAULT_CANCEL_REASON) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        if self._event.is_set():
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(self._reason or DEFAULT_CANCEL_REASON)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for *seconds* unless cancelled first.

        Raises:
            RequestCancelledError: if the token fires before or during the sleep.
        """
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()
