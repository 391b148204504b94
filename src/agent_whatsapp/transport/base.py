"""Transport interface for the messaging session."""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

TRANSPORT_EVENTS = (
    "qr",
    "ready",
    "disconnected",
    "auth_failure",
    "message",
    "message_create",
)


class Transport(ABC):
    """
    One messaging session owned by a SessionClient.

    Implementations deliver lifecycle and inbound events through ``emit``:

    - ``qr``: pairing challenge payload
    - ``ready``: ``{"address": <own number or None>}``
    - ``disconnected``: reason string
    - ``auth_failure``: error message
    - ``message`` / ``message_create``: inbound payload, untouched
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable]] = {name: [] for name in TRANSPORT_EVENTS}

    @abstractmethod
    async def initialize(self) -> None:
        """Start the session. Readiness is reported later via ``ready``."""

    @abstractmethod
    async def destroy(self) -> None:
        """Tear down the session and release its resources."""

    @abstractmethod
    async def is_registered(self, address: str) -> bool:
        """Whether the address is a registered endpoint."""

    @abstractmethod
    async def send_text(self, address: str, body: str) -> str:
        """Send a text message and return the transport message id."""

    def on(self, event: str, handler: Callable) -> Callable:
        """
        Register a handler for a transport event.

        Raises:
            ValueError: If the event name is unknown
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown transport event: {event}")
        self._handlers[event].append(handler)
        return handler

    async def emit(self, event: str, payload: Any = None) -> None:
        """Deliver an event to the registered handlers."""
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Transport {event} handler error: {e}")
