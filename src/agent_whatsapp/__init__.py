"""
Agent WhatsApp Session Client

Owns a single WhatsApp session for the logistics agent: session lifecycle,
outbound delivery with a bounded retry queue, and inbound event relay.
"""

from .client import SessionClient
from .config import ClientConfig, build_launch_options
from .models import (
    SessionStatus,
    SessionState,
    OutboundMessage,
    DeliveryResult,
    DeliveryFailure,
    BulkRecipient,
    BulkFailure,
    LaunchOptions,
)
from .exceptions import (
    SessionClientError,
    NotReadyError,
    InvalidDestinationError,
    TransportError,
    SendTimeoutError,
    AuthFailureError,
)
from .phone import clean_number, format_address, sender_number
from .transport import Transport, BridgeTransport

__version__ = "0.1.0"
__all__ = [
    "SessionClient",
    "ClientConfig",
    "build_launch_options",
    "SessionStatus",
    "SessionState",
    "OutboundMessage",
    "DeliveryResult",
    "DeliveryFailure",
    "BulkRecipient",
    "BulkFailure",
    "LaunchOptions",
    "SessionClientError",
    "NotReadyError",
    "InvalidDestinationError",
    "TransportError",
    "SendTimeoutError",
    "AuthFailureError",
    "clean_number",
    "format_address",
    "sender_number",
    "Transport",
    "BridgeTransport",
]
