"""Shared fixtures: an in-memory transport and clients wired to it."""

import asyncio
from typing import List, Optional

import pytest

from agent_whatsapp import SessionClient, ClientConfig, Transport


class FakeTransport(Transport):
    """In-memory transport that records every call."""

    def __init__(self, address: str = "15550001111", auto_ready: bool = True) -> None:
        super().__init__()
        self.address = address
        self.auto_ready = auto_ready
        self.unregistered = set()
        self.send_error: Optional[Exception] = None
        self.startup_error: Optional[Exception] = None
        self.startup_hang = False
        self.destroy_error: Optional[Exception] = None
        self.fail_next = 0
        self.send_delay = 0.0
        self.hang = False
        self.sent: List[tuple] = []
        self.send_attempts = 0
        self.initialized = False
        self.destroyed = False
        self.launch_options = None

    async def initialize(self) -> None:
        if self.startup_hang:
            await asyncio.sleep(3600)
        if self.startup_error:
            raise self.startup_error
        self.initialized = True
        if self.auto_ready:
            await self.emit("ready", {"address": self.address})

    async def destroy(self) -> None:
        self.destroyed = True
        if self.destroy_error:
            raise self.destroy_error

    async def is_registered(self, address: str) -> bool:
        if self.hang:
            await asyncio.sleep(3600)
        return address not in self.unregistered

    async def send_text(self, address: str, body: str) -> str:
        self.send_attempts += 1
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_error is not None:
            raise self.send_error
        if self.fail_next:
            self.fail_next -= 1
            raise RuntimeError("transient failure")
        self.sent.append((address, body))
        return f"msg-{len(self.sent)}"


def make_config(**overrides) -> ClientConfig:
    """Config with delays removed so tests run fast."""
    values = dict(
        queue_retry_delay_seconds=0,
        bulk_delay_seconds=0,
        send_timeout_seconds=1.0,
        startup_timeout_seconds=1.0,
        log_qr=False,
    )
    values.update(overrides)
    return ClientConfig(**values)


@pytest.fixture
def transport():
    """Transport handed to the default client."""
    return FakeTransport()


@pytest.fixture
def client(transport):
    """Client whose factory returns the shared fake transport."""

    def factory(config, options):
        transport.launch_options = options
        return transport

    return SessionClient(config=make_config(), transport_factory=factory)


@pytest.fixture
def client_factory():
    """Build a (client, transport) pair with config overrides."""

    def build(transport: Optional[FakeTransport] = None, **overrides):
        transport = transport or FakeTransport()
        client = SessionClient(
            config=make_config(**overrides),
            transport_factory=lambda config, options: transport,
        )
        return client, transport

    return build


@pytest.fixture
def make_ready():
    """Initialize a client and wait for the ready state."""

    async def ready(client: SessionClient):
        assert await client.initialize() is True
        return await client.wait_until_ready(timeout=1.0, poll_interval=0.001)

    return ready


@pytest.fixture
def drained():
    """Wait until the client's retry queue has been processed."""

    async def wait(client: SessionClient, timeout: float = 1.0):
        async def poll():
            while client.get_queue_length() or client.is_draining:
                await asyncio.sleep(0.001)

        await asyncio.wait_for(poll(), timeout=timeout)

    return wait


@pytest.fixture
def config_factory():
    """The fast test config builder."""
    return make_config


@pytest.fixture
def transport_class():
    """The fake transport class, for tests that build several."""
    return FakeTransport
