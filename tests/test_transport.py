"""Tests for the transport layer."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from agent_whatsapp.config import ClientConfig
from agent_whatsapp.exceptions import TransportError
from agent_whatsapp.models import LaunchOptions
from agent_whatsapp.transport import (
    BridgeTransport,
    ConnectionState,
    EventStream,
    RestClient,
    Transport,
)


class MinimalTransport(Transport):
    async def initialize(self):
        pass

    async def destroy(self):
        pass

    async def is_registered(self, address):
        return True

    async def send_text(self, address, body):
        return "id"


class FakeSocket:
    """Async-iterable stand-in for a websocket connection."""

    def __init__(self, frames):
        self.frames = frames
        self.close = AsyncMock()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame


def make_bridge() -> BridgeTransport:
    transport = BridgeTransport(
        bridge_url="http://bridge:3001",
        client_id="agent-whatsapp",
        launch_options=LaunchOptions(args=["--no-sandbox"]),
    )
    transport._rest = MagicMock()
    transport._rest.post = AsyncMock()
    transport._rest.get = AsyncMock()
    transport._rest.delete = AsyncMock()
    transport._rest.close = AsyncMock()
    transport._stream = MagicMock()
    transport._stream.connect = AsyncMock()
    transport._stream.close = AsyncMock()
    return transport


class TestTransportBase:
    """Test the Transport interface."""

    def test_abstract(self):
        """Test the interface cannot be instantiated."""
        with pytest.raises(TypeError):
            Transport()

    def test_unknown_event(self):
        """Test registering an unknown event fails."""
        with pytest.raises(ValueError, match="Unknown transport event"):
            MinimalTransport().on("typing", print)

    @pytest.mark.asyncio
    async def test_emit(self):
        """Test emit reaches sync and async handlers, isolating failures."""
        transport = MinimalTransport()
        received = []

        async def async_handler(payload):
            received.append(("async", payload))

        def broken(payload):
            raise RuntimeError("handler bug")

        transport.on("ready", broken)
        transport.on("ready", async_handler)
        transport.on("ready", lambda payload: received.append(("sync", payload)))
        await transport.emit("ready", {"address": "1555"})

        assert received == [("async", {"address": "1555"}), ("sync", {"address": "1555"})]


class TestBridgeTransport:
    """Test BridgeTransport with mocked HTTP and event stream."""

    @pytest.mark.asyncio
    async def test_initialize(self):
        """Test startup connects events, then starts the session."""
        transport = make_bridge()

        await transport.initialize()

        transport._stream.connect.assert_awaited_once()
        transport._rest.post.assert_awaited_once_with(
            "/session",
            {"clientId": "agent-whatsapp", "puppeteer": {"headless": True, "args": ["--no-sandbox"]}},
        )

    @pytest.mark.asyncio
    async def test_is_registered(self):
        """Test the registration check path and result."""
        transport = make_bridge()
        transport._rest.get.return_value = {"registered": True}

        assert await transport.is_registered("15551234567@c.us") is True
        transport._rest.get.assert_awaited_once_with(
            "/contacts/15551234567%40c.us/registered", params={"clientId": "agent-whatsapp"}
        )

    @pytest.mark.asyncio
    async def test_is_not_registered(self):
        """Test a missing flag means unregistered."""
        transport = make_bridge()
        transport._rest.get.return_value = {}

        assert await transport.is_registered("15551234567@c.us") is False

    @pytest.mark.asyncio
    async def test_send_text(self):
        """Test sending returns the bridge message id."""
        transport = make_bridge()
        transport._rest.post.return_value = {"id": "true_15551234567@c.us_3EB0"}

        message_id = await transport.send_text("15551234567@c.us", "hello")

        assert message_id == "true_15551234567@c.us_3EB0"
        transport._rest.post.assert_awaited_once_with(
            "/messages",
            {"clientId": "agent-whatsapp", "chatId": "15551234567@c.us", "body": "hello"},
        )

    @pytest.mark.asyncio
    async def test_send_text_serialized_id(self):
        """Test a structured message id is flattened."""
        transport = make_bridge()
        transport._rest.post.return_value = {"id": {"_serialized": "true_1555_ABC"}}

        assert await transport.send_text("1555@c.us", "hi") == "true_1555_ABC"

    @pytest.mark.asyncio
    async def test_send_text_missing_id(self):
        """Test a response without an id is an error."""
        transport = make_bridge()
        transport._rest.post.return_value = {}

        with pytest.raises(TransportError, match="message id"):
            await transport.send_text("1555@c.us", "hi")

    @pytest.mark.asyncio
    async def test_destroy_closes_on_failure(self):
        """Test connections are closed even if the bridge call fails."""
        transport = make_bridge()
        transport._rest.delete.side_effect = TransportError("Bridge returned 500: boom")

        with pytest.raises(TransportError):
            await transport.destroy()

        transport._rest.delete.assert_awaited_once_with("/session?clientId=agent-whatsapp")
        transport._stream.close.assert_awaited_once()
        transport._rest.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ready_event_mapped(self):
        """Test the bridge ready payload is reduced to the own number."""
        transport = make_bridge()
        received = []
        transport.on("ready", received.append)

        await transport._handle_event("ready", {"wid": {"user": "15550001111", "server": "c.us"}})
        await transport._handle_event("ready", None)

        assert received == [{"address": "15550001111"}, {"address": None}]

    @pytest.mark.asyncio
    async def test_inbound_event_passed_through(self):
        """Test inbound payloads are not altered."""
        transport = make_bridge()
        received = []
        transport.on("message", received.append)
        payload = {"from": "263789859332@c.us", "body": "hi"}

        await transport._handle_event("message", payload)

        assert received[0] is payload

    @pytest.mark.asyncio
    async def test_unknown_event_ignored(self):
        """Test bridge events outside the transport contract are dropped."""
        transport = make_bridge()

        await transport._handle_event("change_battery", {"battery": 50})

    def test_from_config(self):
        """Test building from client configuration."""
        config = ClientConfig(
            bridge_url="https://bridge.example.com/",
            client_id="dispatch",
            bridge_token="secret",
            reconnect_max_attempts=3,
        )

        transport = BridgeTransport.from_config(config, LaunchOptions())

        assert transport.client_id == "dispatch"
        assert transport._rest.server_url == "https://bridge.example.com"
        assert transport._rest._get_headers()["Authorization"] == "Bearer secret"
        assert transport._stream.ws_url == "wss://bridge.example.com/events?clientId=dispatch"
        assert transport._stream._max_reconnect_attempts == 3


class TestRestClient:
    """Test RestClient with a mocked aiohttp session."""

    def _client_with_response(self, status=200, payload=None, content_type="application/json"):
        response = MagicMock(status=status, content_type=content_type, reason="Reason")
        response.json = AsyncMock(return_value=payload if payload is not None else {})

        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=False)

        session = MagicMock(closed=False)
        session.request = MagicMock(return_value=context)

        client = RestClient("http://bridge:3001/", token="secret")
        client._session = session
        return client, session

    def test_headers(self):
        """Test auth header only with a token."""
        assert "Authorization" not in RestClient("http://bridge")._get_headers()
        assert RestClient("http://bridge", token="t")._get_headers()["Authorization"] == "Bearer t"

    @pytest.mark.asyncio
    async def test_post(self):
        """Test a successful POST."""
        client, session = self._client_with_response(payload={"id": "abc"})

        assert await client.post("/messages", {"body": "hi"}) == {"id": "abc"}
        args, kwargs = session.request.call_args
        assert args == ("POST", "http://bridge:3001/messages")
        assert kwargs["json"] == {"body": "hi"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Test an empty or non-JSON body decodes to {}."""
        client, _ = self._client_with_response(content_type="text/plain")

        assert await client.delete("/session") == {}

    @pytest.mark.asyncio
    async def test_error_status(self):
        """Test bridge errors are raised with their message."""
        client, _ = self._client_with_response(status=404, payload={"error": "no session"})

        with pytest.raises(TransportError, match="Bridge returned 404: no session"):
            await client.get("/contacts/x/registered")

    @pytest.mark.asyncio
    async def test_error_status_without_body(self):
        """Test the HTTP reason is used when the body is empty."""
        client, _ = self._client_with_response(status=502, content_type="text/html")

        with pytest.raises(TransportError, match="Bridge returned 502: Reason"):
            await client.get("/health")

    @pytest.mark.asyncio
    async def test_client_error_wrapped(self):
        """Test connection failures become TransportError."""
        client, session = self._client_with_response()
        session.request.side_effect = aiohttp.ClientConnectionError("connection refused")

        with pytest.raises(TransportError, match="Request failed"):
            await client.post("/messages", {})


class TestEventStream:
    """Test EventStream."""

    def test_ws_url(self):
        """Test the event URL is derived from the HTTP base URL."""
        stream = EventStream("http://bridge:3001/", on_event=AsyncMock(), client_id="agent")

        assert stream.ws_url == "ws://bridge:3001/events?clientId=agent"
        assert stream.state == ConnectionState.DISCONNECTED
        assert not stream.is_connected

    def test_ws_url_encodes_client_id(self):
        """Test reserved characters in the session id are escaped."""
        stream = EventStream("https://bridge", on_event=AsyncMock(), client_id="fleet ops/1&x=2")

        assert stream.ws_url == "wss://bridge/events?clientId=fleet%20ops%2F1%26x%3D2"

    @pytest.mark.asyncio
    async def test_route_event(self):
        """Test frames are passed to the callback as (type, payload)."""
        on_event = AsyncMock()
        stream = EventStream("http://bridge", on_event=on_event)

        await stream._route_event({"type": "qr", "payload": "2@abc"})
        await stream._route_event({"payload": "no type"})

        on_event.assert_awaited_once_with("qr", "2@abc")

    @pytest.mark.asyncio
    async def test_connect_failure_without_reconnect(self):
        """Test a failed connection raises when reconnection is off."""
        stream = EventStream("http://bridge", on_event=AsyncMock(), auto_reconnect=False)

        with patch(
            "agent_whatsapp.transport.websocket.websockets.connect",
            new=AsyncMock(side_effect=OSError("connection refused")),
        ):
            with pytest.raises(TransportError, match="Event stream connection failed"):
                await stream.connect()

        assert stream.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_receive_frames_then_disconnect(self):
        """Test frames are routed and a closed stream reports disconnected."""
        events = []

        async def on_event(event_type, payload):
            events.append((event_type, payload))

        socket = FakeSocket([
            json.dumps({"type": "ready", "payload": {"wid": {"user": "1555"}}}),
            "not json",
            json.dumps({"type": "message", "payload": {"body": "hi"}}),
        ])
        stream = EventStream("http://bridge", on_event=on_event, auto_reconnect=False)

        with patch(
            "agent_whatsapp.transport.websocket.websockets.connect",
            new=AsyncMock(return_value=socket),
        ):
            await stream.connect()
            await stream._receive_task

        assert events == [
            ("ready", {"wid": {"user": "1555"}}),
            ("message", {"body": "hi"}),
            ("disconnected", "Bridge event stream closed"),
        ]
        assert stream.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close(self):
        """Test closing prevents further connects."""
        stream = EventStream("http://bridge", on_event=AsyncMock())

        await stream.close()

        assert stream.state == ConnectionState.CLOSED
        with pytest.raises(TransportError, match="closed"):
            await stream.connect()
