"""
Event handling system for realtime communication.
Implements a pub/sub mechanism with trailing-wildcard patterns and async support.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple, Union

logger = logging.getLogger(__name__)

Handler = Union[Callable[[Any], Any], Callable[[Any], Awaitable[Any]]]


@dataclass(frozen=True)
class EventPattern:
    """
    An event subscription pattern.

    ``"server.*"`` becomes a prefix pattern matching every name starting with
    ``"server."``; anything else matches exactly.
    """

    value: str
    is_prefix: bool = False

    @classmethod
    def parse(cls, pattern: Union[str, "EventPattern"]) -> "EventPattern":
        if isinstance(pattern, EventPattern):
            return pattern
        if pattern.endswith("*"):
            return cls(value=pattern[:-1], is_prefix=True)
        return cls(value=pattern)

    def matches(self, event_name: str) -> bool:
        if self.is_prefix:
            return event_name.startswith(self.value)
        return event_name == self.value

    def __str__(self) -> str:
        return f"{self.value}*" if self.is_prefix else self.value


class RealtimeEventHandler:
    """
    Registry of event listeners with ordered, isolated dispatch.

    Handlers run synchronously in registration order. Coroutine handlers are
    scheduled as tasks and never awaited by ``dispatch``.
    """

    def __init__(self) -> None:
        self.event_handlers: List[Tuple[EventPattern, Handler]] = []
        self._pending_tasks: Set[asyncio.Task] = set()
        self._waiters: Set[asyncio.Future] = set()

    def on(self, event_name: Union[str, EventPattern], handler: Handler) -> None:
        """
        Register a handler function for an event name or wildcard pattern.

        Args:
            event_name (str): Exact event name, or a pattern ending in ``*``.
            handler (Callable): Function or coroutine to be called when the event fires.
        """
        if not callable(handler):
            logger.error(f"Tried to register non-callable handler for event '{event_name}'.")
            raise TypeError("Handler must be callable.")
        pattern = EventPattern.parse(event_name)
        self.event_handlers.append((pattern, handler))
        logger.debug(f"Handler registered for event '{pattern}'.")

    def off(self, event_name: Union[str, EventPattern], handler: Optional[Handler] = None) -> None:
        """
        Remove one handler, or every handler registered under the given pattern.
        """
        pattern = EventPattern.parse(event_name)
        self.event_handlers = [
            (p, h)
            for p, h in self.event_handlers
            if not (p == pattern and (handler is None or h == handler))
        ]

    def clear_event_handlers(self) -> None:
        """
        Remove all registered event handlers.
        """
        self.event_handlers.clear()
        logger.debug("All event handlers cleared.")

    def dispatch(self, event_name: str, event: Any = None) -> None:
        """
        Trigger all handlers whose pattern matches ``event_name``.

        Args:
            event_name (str): Name of the event to dispatch.
            event (Any): Data associated with the event.
        """
        # Snapshot so handlers may (un)register while we iterate.
        handlers = [h for p, h in self.event_handlers if p.matches(event_name)]
        if not handlers:
            logger.debug(f"No handlers registered for event '{event_name}'.")
            return

        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    task = asyncio.get_running_loop().create_task(handler(event))
                    self._pending_tasks.add(task)
                    task.add_done_callback(self._on_task_done)
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Error dispatching event '{event_name}' to handler: {e}", exc_info=True)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Async event handler failed: {exc}", exc_info=exc)

    async def wait_for_next(self, event_name: Union[str, EventPattern], timeout: Optional[float] = None) -> Any:
        """
        Wait for the next occurrence of an event.

        Args:
            event_name (str): Event name or pattern to wait for.
            timeout (Optional[float]): Seconds to wait before ``asyncio.TimeoutError``.

        Returns:
            Any: Data of the received event.
        """
        future = asyncio.get_running_loop().create_future()

        def _handler(event: Any) -> None:
            if not future.done():
                future.set_result(event)

        self.on(event_name, _handler)
        self._waiters.add(future)
        logger.debug(f"Waiting for next event '{event_name}'.")
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            self._waiters.discard(future)
            self.off(event_name, _handler)

    def fail_waiters(self, error: Exception) -> None:
        """
        Wake every pending ``wait_for_next`` call by raising ``error`` in it.
        """
        for future in list(self._waiters):
            if not future.done():
                future.set_exception(error)

