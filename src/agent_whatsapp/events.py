"""Typed callback registries for session client events."""

import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

QR = "qr"
STATUS = "status"
MESSAGE = "message"
MESSAGE_CREATE = "message_create"
DELIVERY_FAILED = "delivery_failed"

PUBLIC_EVENTS = (QR, STATUS, MESSAGE, MESSAGE_CREATE, DELIVERY_FAILED)


class EventBus:
    """
    Publish/subscribe registry with a fixed set of event names.

    Handlers may be plain functions or coroutine functions. A handler that
    raises is logged and skipped; the remaining handlers still run.

    Example:
        >>> bus = EventBus()
        >>> @bus.subscribe("status")
        ... async def on_status(state):
        ...     print(state.status)
    """

    def __init__(self, events: Iterable[str] = PUBLIC_EVENTS) -> None:
        self._handlers: Dict[str, List[Callable]] = {name: [] for name in events}

    def subscribe(self, event: str, handler: Optional[Callable] = None) -> Callable:
        """
        Register a handler for an event.

        Usable directly or as a decorator factory.

        Raises:
            ValueError: If the event name is unknown
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown event: {event}")

        if handler is None:
            def decorator(func: Callable) -> Callable:
                self._handlers[event].append(func)
                return func
            return decorator

        self._handlers[event].append(handler)
        return handler

    async def emit(self, event: str, payload: Any = None) -> None:
        """Deliver a payload to every handler of an event."""
        for handler in list(self._handlers[event]):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"{event} handler error: {e}")
