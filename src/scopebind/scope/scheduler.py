"""
Deferred callback scheduling for the digest engine.

Deferred digests and apply-async flushes are the only points where a
scope tree hands control back to the event loop.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger("scopebind.scope.scheduler")


class DeferredScheduler:
    """
    Schedules callbacks after a short delay on an asyncio event loop.

    When constructed without a loop, callbacks go to the loop running in
    the current thread at scheduling time. Without any loop the callback
    is not scheduled; queued work then runs on the next explicit digest.
    """

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        delay: float = 0.0,
    ):
        self._loop = loop
        self._delay = delay

    @property
    def delay(self) -> float:
        return self._delay

    def _resolve_loop(self) -> Optional[asyncio.AbstractEventLoop]:
        if self._loop is not None:
            return None if self._loop.is_closed() else self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def schedule(self, callback: Callable[[], None]) -> Optional[asyncio.TimerHandle]:
        """Schedules ``callback``; returns its handle, or None when no loop is available."""
        loop = self._resolve_loop()
        if loop is None:
            logger.debug(
                "deferred_callback_not_scheduled",
                extra={"callback": getattr(callback, "__name__", repr(callback))},
            )
            return None
        return loop.call_later(self._delay, callback)

    @staticmethod
    def cancel(handle: Optional[asyncio.TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()
