"""
Asyncio-based in-process message bus.

``LocalBus`` implements the :class:`~usbportal.core.contracts.Transport`
protocol without any IPC: methods are exported by in-process modules (such as
the broker simulator) and signals are queued and fanned out to subscribers by a
single dispatcher task. Handlers for a signal are awaited one after the other,
so every subscription observes signals in exactly the order they were emitted.

Because the dispatcher waits on each handler, a handler that emits back into a
full queue could never be drained. Such an emit raises :class:`BusError`
instead of blocking.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from asyncio import QueueEmpty
from collections import defaultdict
from typing import Any

from .contracts import BusStatus, MethodHandler, SignalHandler, Subscription
from .errors import BusError

logger = logging.getLogger(__name__)

_SignalKey = tuple[str, str, str]
_connection_ids = itertools.count(1)


class LocalBus:
    """Minimal in-process signal/method bus."""

    def __init__(self, *, queue_size: int = 256, unique_name: str | None = None) -> None:
        self._queue: asyncio.Queue[tuple[_SignalKey, tuple[Any, ...]] | None] = asyncio.Queue(
            maxsize=queue_size
        )
        self._subscribers: dict[_SignalKey, list[SignalHandler]] = defaultdict(list)
        self._methods: dict[tuple[str, str], MethodHandler] = {}
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._unique_name = unique_name or f":1.{next(_connection_ids)}"
        self._emitted_total = 0
        self._dispatched_total = 0
        self._dropped_total = 0
        self._calls_total = 0

    @property
    def unique_name(self) -> str:
        return self._unique_name

    @property
    def running(self) -> bool:
        return self._dispatcher_task is not None

    def subscribe(
        self, path: str, interface: str, member: str, handler: SignalHandler
    ) -> Subscription:
        """Register a handler for ``member`` signals of ``interface`` emitted at ``path``."""
        self._subscribers[(path, interface, member)].append(handler)
        logger.debug("Subscribed %s to %s.%s at %s", handler, interface, member, path)
        return Subscription(path=path, interface=interface, member=member, handler=handler)

    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a previously registered handler."""
        key = (subscription.path, subscription.interface, subscription.member)
        handlers = self._subscribers.get(key, [])
        if subscription.handler in handlers:
            handlers.remove(subscription.handler)
            logger.debug(
                "Unsubscribed %s from %s.%s at %s",
                subscription.handler,
                subscription.interface,
                subscription.member,
                subscription.path,
            )
        if not handlers:
            self._subscribers.pop(key, None)

    def subscriber_count(self, path: str | None = None) -> int:
        """Number of live handlers, optionally restricted to one object path."""
        return sum(
            len(handlers)
            for (sub_path, _iface, _member), handlers in self._subscribers.items()
            if path is None or sub_path == path
        )

    def export_method(self, interface: str, method: str, handler: MethodHandler) -> None:
        """Serve ``interface.method`` calls on every object path."""
        self._methods[(interface, method)] = handler
        logger.debug("Exported method %s.%s", interface, method)

    def unexport_method(self, interface: str, method: str) -> None:
        self._methods.pop((interface, method), None)

    async def call(
        self, path: str, interface: str, method: str, args: tuple[Any, ...] = ()
    ) -> Any:
        """Invoke an exported method and return its reply."""
        if self._stopping.is_set():
            raise BusError(f"Bus is shutting down; cannot call {interface}.{method}")
        handler = self._methods.get((interface, method))
        if handler is None:
            raise BusError(
                f"No such method {interface}.{method}",
                details={"path": path, "interface": interface, "method": method},
            )
        self._calls_total += 1
        logger.debug("Calling %s.%s at %s", interface, method, path)
        result = handler(path, tuple(args))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def emit_signal(
        self, path: str, interface: str, member: str, args: tuple[Any, ...] = ()
    ) -> None:
        """Queue a signal for ordered delivery to its subscribers."""
        if self._stopping.is_set():
            raise BusError(f"Bus is shutting down; cannot emit {interface}.{member}")
        if self._queue.full() and asyncio.current_task() is self._dispatcher_task:
            raise BusError(
                f"Queue is full; a signal handler cannot emit {interface}.{member}",
                details={"path": path, "queue_capacity": self._queue.maxsize},
            )
        self._emitted_total += 1
        if self._queue.full():
            logger.warning("Bus queue is full; emitter will wait for free space.")
        await self._queue.put(((path, interface, member), tuple(args)))
        logger.debug("Queued signal %s.%s at %s", interface, member, path)

    async def flush(self) -> None:
        """Wait until every queued signal has been dispatched."""
        await self._queue.join()

    async def start(self) -> None:
        """Start the dispatcher loop."""
        if self._dispatcher_task is None:
            self._stopping.clear()
            self._dispatcher_task = asyncio.create_task(self._dispatcher(), name="usbportal-bus")
            logger.info("Local bus %s started.", self._unique_name)

    async def stop(self) -> None:
        """Stop the dispatcher loop, dropping anything still queued."""
        if self._dispatcher_task is None:
            return
        self._stopping.set()
        await self._queue.put(None)
        await self._dispatcher_task
        self._dispatcher_task = None
        logger.info("Local bus %s stopped.", self._unique_name)

    async def __aenter__(self) -> LocalBus:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def status(self) -> BusStatus:
        return BusStatus(
            queue_depth=self._queue.qsize(),
            queue_capacity=self._queue.maxsize,
            subscriber_count=self.subscriber_count(),
            method_count=len(self._methods),
            emitted_total=self._emitted_total,
            dispatched_total=self._dispatched_total,
            dropped_total=self._dropped_total,
            calls_total=self._calls_total,
        )

    async def _dispatcher(self) -> None:
        """Deliver queued signals to their subscribers, one handler at a time."""
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    break
                key, args = item
                # Snapshot so handlers may unsubscribe while being dispatched.
                handlers = list(self._subscribers.get(key, []))
                logger.debug(
                    "Dispatching %s.%s at %s to %d handlers", key[1], key[2], key[0], len(handlers)
                )
                for handler in handlers:
                    if handler not in self._subscribers.get(key, []):
                        continue
                    await self._call_handler(handler, key, args)
                self._dispatched_total += 1
            finally:
                self._queue.task_done()
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except QueueEmpty:
                break
            else:
                self._dropped_total += 1
                self._queue.task_done()
        logger.info("Local bus dispatcher drained %d dropped signals.", self._dropped_total)

    async def _call_handler(
        self, handler: SignalHandler, key: _SignalKey, args: tuple[Any, ...]
    ) -> None:
        """
        Invoke a handler that may be sync or async. Failures are logged so one
        misbehaving subscriber cannot stall the others.
        """
        try:
            result = handler(key[0], args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Signal handler %s failed for %s.%s", handler, key[1], key[2])


__all__ = ["LocalBus"]

