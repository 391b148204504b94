"""Transport layer for the messaging session."""

from .base import Transport, TRANSPORT_EVENTS
from .bridge import BridgeTransport
from .rest import RestClient
from .websocket import EventStream, ConnectionState

__all__ = [
    "Transport",
    "TRANSPORT_EVENTS",
    "BridgeTransport",
    "RestClient",
    "EventStream",
    "ConnectionState",
]
