"""WebSocket event stream from the WhatsApp bridge."""

import asyncio
import json
import logging
from typing import Optional, Callable, Any, Awaitable, Dict
from enum import Enum
from urllib.parse import quote

import websockets

from ..exceptions import TransportError

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Any], Awaitable[None]]


class ConnectionState(Enum):
    """WebSocket connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class EventStream:
    """
    Receives bridge events over a WebSocket.

    Each frame is ``{"type": <event>, "payload": <data>}`` and is passed to
    the callback. Losing the connection is reported as a ``disconnected``
    event, followed by reconnection with exponential backoff.
    """

    def __init__(
        self,
        server_url: str,
        on_event: EventCallback,
        client_id: Optional[str] = None,
        auto_reconnect: bool = True,
        max_reconnect_attempts: int = 10,
    ):
        """
        Initialize the event stream.

        Args:
            server_url: Bridge base URL (http/https)
            on_event: Coroutine called with (event type, payload)
            client_id: Session id to subscribe to
            auto_reconnect: Enable automatic reconnection on disconnect
            max_reconnect_attempts: Attempts before giving up
        """
        ws_url = server_url.rstrip("/").replace("http://", "ws://").replace("https://", "wss://")
        self.ws_url = f"{ws_url}/events"
        if client_id:
            self.ws_url += f"?clientId={quote(client_id, safe='')}"
        self.on_event = on_event
        self.auto_reconnect = auto_reconnect

        self._state = ConnectionState.DISCONNECTED
        self._ws: Optional[Any] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        self._reconnect_delays = [3, 6, 12, 24, 60]
        self._current_reconnect_attempt = 0
        self._max_reconnect_attempts = max_reconnect_attempts

        self._closed = False

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if WebSocket is connected."""
        return self._state == ConnectionState.CONNECTED and self._ws is not None

    async def connect(self) -> None:
        """
        Connect to the bridge event stream.

        Raises:
            TransportError: If connection fails and reconnection is disabled
        """
        if self._closed:
            raise TransportError("Event stream is closed")

        if self.is_connected:
            logger.debug("Already connected to event stream")
            return

        self._state = ConnectionState.CONNECTING
        logger.info(f"Connecting to event stream: {self.ws_url}")

        try:
            self._ws = await websockets.connect(
                self.ws_url,
                ping_interval=30,
                ping_timeout=10,
            )
            self._state = ConnectionState.CONNECTED
            self._current_reconnect_attempt = 0
            logger.info("Event stream connected")

            self._receive_task = asyncio.create_task(self._receive_loop())

        except (OSError, websockets.exceptions.WebSocketException) as e:
            self._state = ConnectionState.DISCONNECTED
            logger.error(f"Failed to connect to event stream: {e}")

            if self.auto_reconnect and not self._closed:
                await self._schedule_reconnect()
            else:
                raise TransportError(f"Event stream connection failed: {e}") from e

    async def close(self) -> None:
        """Close the event stream permanently."""
        logger.info("Closing event stream")
        self._closed = True

        for task in (self._receive_task, self._reconnect_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._receive_task = None
        self._reconnect_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None

        self._state = ConnectionState.CLOSED

    async def _receive_loop(self) -> None:
        """Receive and route incoming events."""
        try:
            async for frame in self._ws:
                try:
                    data = json.loads(frame)
                    await self._route_event(data)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid JSON received: {e}")
        except websockets.exceptions.ConnectionClosed:
            logger.warning("Event stream connection closed")
        except asyncio.CancelledError:
            logger.debug("Receive loop cancelled")
            raise

        if not self._closed:
            self._state = ConnectionState.DISCONNECTED
            self._ws = None
            await self.on_event("disconnected", "Bridge event stream closed")
            if self.auto_reconnect:
                await self._schedule_reconnect()

    async def _route_event(self, data: Dict[str, Any]) -> None:
        """
        Pass one decoded frame to the callback.

        Args:
            data: Parsed frame
        """
        event_type = data.get("type")
        if not event_type:
            logger.debug(f"Frame without type ignored: {data}")
            return
        await self.on_event(event_type, data.get("payload"))

    async def _schedule_reconnect(self) -> None:
        """Schedule reconnection with exponential backoff."""
        if self._reconnect_task and not self._reconnect_task.done():
            return

        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        """Attempt to reconnect with exponential backoff."""
        self._state = ConnectionState.RECONNECTING

        while self._current_reconnect_attempt < self._max_reconnect_attempts:
            delay_index = min(self._current_reconnect_attempt, len(self._reconnect_delays) - 1)
            delay = self._reconnect_delays[delay_index]

            logger.info(
                f"Reconnecting in {delay}s "
                f"(attempt {self._current_reconnect_attempt + 1}/{self._max_reconnect_attempts})"
            )
            await asyncio.sleep(delay)

            if self._closed:
                return

            try:
                self._ws = await websockets.connect(
                    self.ws_url,
                    ping_interval=30,
                    ping_timeout=10,
                )
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.error(f"Reconnection attempt failed: {e}")
                self._current_reconnect_attempt += 1
                continue

            self._state = ConnectionState.CONNECTED
            self._current_reconnect_attempt = 0
            self._receive_task = asyncio.create_task(self._receive_loop())
            logger.info("Reconnection successful")
            return

        logger.error("Max reconnection attempts reached, giving up")
        self._state = ConnectionState.DISCONNECTED
