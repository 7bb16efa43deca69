"""Observer-based cancellation token shared between a caller and a pending request."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

CancelHandler = Callable[[], None]


class Cancellable:
    """
    A one-shot cancellation flag with connectable handlers.

    Handlers run synchronously, in connection order, the first time
    :meth:`cancel` is called. A handler connected after cancellation runs
    immediately.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._handlers: dict[int, CancelHandler] = {}
        self._ids = itertools.count(1)
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._event is not None:
            self._event.set()
        for handler in list(self._handlers.values()):
            try:
                handler()
            except Exception:
                logger.exception("Cancellation handler %s failed", handler)

    def connect(self, handler: CancelHandler) -> int:
        """Register ``handler``; returns an id for :meth:`disconnect`."""
        handler_id = next(self._ids)
        if self._cancelled:
            handler()
            return handler_id
        self._handlers[handler_id] = handler
        return handler_id

    def disconnect(self, handler_id: int) -> None:
        self._handlers.pop(handler_id, None)

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()


__all__ = ["CancelHandler", "Cancellable"]
