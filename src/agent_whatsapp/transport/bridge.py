"""Transport backed by a whatsapp-web.js bridge process."""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from ..config import ClientConfig
from ..exceptions import TransportError
from ..models import LaunchOptions
from .base import Transport
from .rest import RestClient
from .websocket import EventStream

logger = logging.getLogger(__name__)


class BridgeTransport(Transport):
    """
    Drives a whatsapp-web.js session hosted by a bridge process.

    Commands go over HTTP; lifecycle and inbound events arrive on the
    bridge's WebSocket event stream.

    Example:
        >>> transport = BridgeTransport.from_config(config, options)
        >>> transport.on("ready", handle_ready)
        >>> await transport.initialize()
    """

    def __init__(
        self,
        bridge_url: str,
        client_id: str,
        launch_options: LaunchOptions,
        token: Optional[str] = None,
        max_reconnect_attempts: int = 10,
    ) -> None:
        """
        Initialize the bridge transport.

        Args:
            bridge_url: Base URL of the bridge HTTP API
            client_id: Session id used for stored authentication
            launch_options: Browser options forwarded to the bridge
            token: Optional bearer token for the bridge
            max_reconnect_attempts: Event stream reconnection attempts
        """
        super().__init__()
        self.client_id = client_id
        self.launch_options = launch_options
        self._rest = RestClient(bridge_url, token=token)
        self._stream = EventStream(
            bridge_url,
            on_event=self._handle_event,
            client_id=client_id,
            max_reconnect_attempts=max_reconnect_attempts,
        )

    @classmethod
    def from_config(cls, config: ClientConfig, options: LaunchOptions) -> "BridgeTransport":
        """Build a transport from client configuration."""
        return cls(
            bridge_url=config.bridge_url,
            client_id=config.client_id,
            launch_options=options,
            token=config.bridge_token,
            max_reconnect_attempts=config.reconnect_max_attempts,
        )

    async def initialize(self) -> None:
        """Subscribe to events, then ask the bridge to start the session."""
        await self._stream.connect()
        await self._rest.post(
            "/session",
            {"clientId": self.client_id, "puppeteer": self.launch_options.to_payload()},
        )
        logger.info(f"Bridge session {self.client_id} starting")

    async def destroy(self) -> None:
        """Stop the bridge session and close connections."""
        try:
            await self._rest.delete(f"/session?clientId={quote(self.client_id, safe='')}")
        finally:
            await self._stream.close()
            await self._rest.close()
        logger.info(f"Bridge session {self.client_id} destroyed")

    async def is_registered(self, address: str) -> bool:
        """Ask the bridge whether an address is on WhatsApp."""
        data = await self._rest.get(
            f"/contacts/{quote(address)}/registered", params={"clientId": self.client_id}
        )
        return bool(data.get("registered"))

    async def send_text(self, address: str, body: str) -> str:
        """
        Send a text message through the bridge.

        Raises:
            TransportError: If the bridge response has no message id
        """
        data = await self._rest.post(
            "/messages", {"clientId": self.client_id, "chatId": address, "body": body}
        )
        message_id = data.get("id")
        # whatsapp-web.js serializes ids as {"id": ..., "_serialized": ...}
        if isinstance(message_id, dict):
            message_id = message_id.get("id") or message_id.get("_serialized")
        if not message_id:
            raise TransportError("Bridge response did not include a message id")
        return str(message_id)

    async def _handle_event(self, event_type: str, payload: Any) -> None:
        """Translate bridge frames into transport events."""
        if event_type == "ready":
            payload = {"address": _own_number(payload)}
        elif event_type not in self._handlers:
            logger.debug(f"Unknown bridge event: {event_type}")
            return
        await self.emit(event_type, payload)


def _own_number(info: Optional[Dict[str, Any]]) -> Optional[str]:
    if not info:
        return None
    wid = info.get("wid")
    if isinstance(wid, dict):
        return wid.get("user")
    return info.get("address")
