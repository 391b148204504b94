"""Session client: lifecycle, delivery and retry queue for one WhatsApp session."""

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Union

from .async_utils import TaskManager, run_with_timeout
from .config import ClientConfig, build_launch_options, get_config
from .events import (
    EventBus,
    QR,
    STATUS,
    MESSAGE,
    MESSAGE_CREATE,
    DELIVERY_FAILED,
)
from .exceptions import (
    SessionClientError,
    NotReadyError,
    InvalidDestinationError,
    TransportError,
    SendTimeoutError,
    AuthFailureError,
)
from .logging import handle_exception
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
from .phone import clean_number, format_address
from .qr import render_for_environment
from .transport import BridgeTransport, Transport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[ClientConfig, LaunchOptions], Transport]
BulkOutcome = Union[DeliveryResult, BulkFailure]


class SessionClient:
    """
    Owns one messaging session and delivers outbound messages through it.

    The client tracks the session lifecycle (disconnected, connecting, ready,
    error), sends single and bulk messages, and keeps a FIFO retry queue that
    is drained whenever the session becomes ready.

    Construct one instance at process start and pass it to the components
    that need it.

    Example:
        >>> client = SessionClient()
        >>>
        >>> @client.on_status
        ... async def log_status(state):
        ...     print(state.status)
        >>>
        >>> await client.initialize()
        >>> await client.wait_until_ready(timeout=120)
        >>> await client.send_message("+1 555 123 4567", "Trip assigned")
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        """
        Initialize the session client.

        Args:
            config: Client configuration (default: global configuration)
            transport_factory: Builds the transport from config and launch
                options (default: BridgeTransport.from_config)
        """
        self.config = config or get_config()
        self._transport_factory = transport_factory or BridgeTransport.from_config
        self._transport: Optional[Transport] = None
        self._state = SessionState()
        self._queue: Deque[OutboundMessage] = deque()
        self._is_draining = False
        self._events = EventBus()
        self._tasks = TaskManager()
        self._startup_task: Optional[asyncio.Task] = None

    # ----- State accessors -----

    def get_state(self) -> SessionState:
        """Snapshot of the session state."""
        return self._state.model_copy()

    def is_connected(self) -> bool:
        """Whether the session is ready to send."""
        return self._state.status == SessionStatus.READY

    def get_queue_length(self) -> int:
        """Number of messages waiting in the retry queue."""
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        """Whether a queue drain is in progress."""
        return self._is_draining

    def get_health(self) -> Dict[str, Any]:
        """
        Summary for status and health endpoints.

        Returns:
            Dictionary with status, connected, address, messages_sent,
            queued_messages and last_error
        """
        state = self._state
        return {
            "status": state.status.value,
            "connected": state.status == SessionStatus.READY,
            "address": state.address,
            "messages_sent": state.messages_sent,
            "queued_messages": len(self._queue),
            "last_error": state.last_error,
        }

    # ----- Event subscription -----

    def on(self, event: str, handler: Callable) -> Callable:
        """
        Register a handler for a client event.

        Events: qr, status, message, message_create, delivery_failed.
        """
        return self._events.subscribe(event, handler)

    def on_qr(self, handler: Callable) -> Callable:
        """Register handler for pairing challenges."""
        return self._events.subscribe(QR, handler)

    def on_status(self, handler: Callable) -> Callable:
        """Register handler for session state changes (receives a SessionState)."""
        return self._events.subscribe(STATUS, handler)

    def on_message(self, handler: Callable) -> Callable:
        """
        Register handler for inbound messages.

        Payloads are passed through exactly as the transport delivered them.

        Example:
            @client.on_message
            async def route(msg):
                print(msg["from"], msg["body"])
        """
        return self._events.subscribe(MESSAGE, handler)

    def on_message_create(self, handler: Callable) -> Callable:
        """Register handler for message_create events (includes own messages)."""
        return self._events.subscribe(MESSAGE_CREATE, handler)

    def on_delivery_failed(self, handler: Callable) -> Callable:
        """Register handler for queued messages dropped without delivery."""
        return self._events.subscribe(DELIVERY_FAILED, handler)

    # ----- Lifecycle -----

    async def initialize(self) -> bool:
        """
        Start the session, or report readiness if it is already starting.

        Builds the transport, registers lifecycle listeners and starts the
        transport in the background. Readiness is reported later through
        the status event.

        Returns:
            True once startup has been initiated (or the current readiness
            when already connecting/ready), False if the transport could
            not be constructed

        Raises:
            SessionClientError: If the client has been closed
        """
        status = self._state.status
        if status in (SessionStatus.CONNECTING, SessionStatus.READY):
            return status == SessionStatus.READY

        if self._tasks.is_shutting_down():
            raise SessionClientError("Session client is closed")

        # Claimed before the first await so concurrent calls return above
        self._state.status = SessionStatus.CONNECTING

        if self._transport is not None:
            # Stale session left behind by an error or a transport disconnect
            await self._dispose_transport()

        await self._set_state(status=SessionStatus.CONNECTING)

        try:
            options = build_launch_options(self.config)
            transport = self._transport_factory(self.config, options)
            self._register_lifecycle_handlers(transport)
        except Exception as e:
            await self._set_state(status=SessionStatus.ERROR, last_error=str(e) or "Unknown error")
            handle_exception(e, context="initialize")
            return False

        self._transport = transport
        self._startup_task = await self._tasks.create_task(
            self._start_transport(transport), name="transport_startup"
        )
        logger.info("WhatsApp session startup initiated")
        return True

    async def wait_until_ready(
        self, timeout: Optional[float] = None, poll_interval: float = 0.05
    ) -> SessionState:
        """
        Wait until the session is ready.

        Args:
            timeout: Maximum wait in seconds (None waits forever)
            poll_interval: Status check interval in seconds

        Returns:
            Session state snapshot

        Raises:
            AuthFailureError: If the session enters the error state
            NotReadyError: If the timeout expires first
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while True:
            status = self._state.status
            if status == SessionStatus.READY:
                return self.get_state()
            if status == SessionStatus.ERROR:
                raise AuthFailureError(self._state.last_error or "Session failed")
            if deadline is not None and loop.time() >= deadline:
                raise NotReadyError(
                    f"WhatsApp session not ready after {timeout}s (status: {status.value})",
                    status=status.value,
                )
            await asyncio.sleep(poll_interval)

    async def disconnect(self) -> None:
        """
        Destroy the session and force the disconnected state.

        Safe to call repeatedly. Queued messages are kept for the next session.
        """
        if self._transport is not None:
            await self._dispose_transport()

        if self._state.status != SessionStatus.DISCONNECTED or self._state.address:
            await self._set_state(status=SessionStatus.DISCONNECTED, address=None)
        logger.info("WhatsApp session disconnected")

    async def close(self) -> None:
        """Disconnect and cancel all background tasks."""
        await self.disconnect()
        await self._tasks.cancel_all()

    async def __aenter__(self) -> "SessionClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        """Exit async context manager and cleanup."""
        await self.close()

    # ----- Sending -----

    async def send_message(self, destination: str, body: str) -> DeliveryResult:
        """
        Send a text message.

        A transport failure during a ready session queues the message for a
        background retry and is still raised; ``TransportError.queued`` tells
        the caller that a retry is pending.

        Args:
            destination: Phone number in any common format
            body: Message text

        Returns:
            DeliveryResult with status "sent"

        Raises:
            NotReadyError: Session is not ready (message is not queued)
            InvalidDestinationError: Number is malformed or not registered
            TransportError: The transport failed (message queued for retry)
        """
        try:
            return await self._deliver(destination, body)
        except TransportError as e:
            await self.queue_message(destination, body)
            e.queued = True
            raise

    async def queue_message(self, destination: str, body: str) -> OutboundMessage:
        """
        Add a message to the retry queue.

        It is sent by the next drain, which runs whenever the session becomes
        ready or process_message_queue() is called. When the queue is full,
        the oldest entry is dropped and reported through delivery_failed.
        """
        message = OutboundMessage(destination=destination, body=body)
        if len(self._queue) >= self.config.max_queue_size:
            oldest = self._queue.popleft()
            await self._report_drop(oldest, "Retry queue full")
        self._queue.append(message)
        logger.debug(f"Queued message for {destination} ({len(self._queue)} queued)")
        return message

    async def send_bulk_messages(
        self,
        recipients: Iterable[Union[BulkRecipient, Mapping[str, Any]]],
        delay: Optional[float] = None,
    ) -> List[BulkOutcome]:
        """
        Send messages one after another, pausing between sends.

        Individual failures are collected, never raised.

        Args:
            recipients: BulkRecipient models or {"to", "body"} mappings
            delay: Seconds between sends (default: bulk_delay_seconds)

        Returns:
            One DeliveryResult or BulkFailure per recipient, in input order

        Example:
            >>> results = await client.send_bulk_messages(
            ...     [{"to": "+15551234567", "body": "Load ready"}], delay=2.0
            ... )
        """
        delay = self.config.bulk_delay_seconds if delay is None else delay
        items = [
            r if isinstance(r, BulkRecipient) else BulkRecipient.model_validate(r)
            for r in recipients
        ]

        results: List[BulkOutcome] = []
        for index, recipient in enumerate(items):
            if index and delay > 0:
                await asyncio.sleep(delay)
            try:
                results.append(await self.send_message(recipient.destination, recipient.body))
            except SessionClientError as e:
                results.append(BulkFailure(destination=recipient.destination, error=str(e)))

        sent = sum(1 for r in results if isinstance(r, DeliveryResult))
        logger.info(f"Bulk send finished: {sent}/{len(results)} delivered")
        return results

    async def process_message_queue(self) -> None:
        """
        Drain the retry queue while the session stays ready.

        Only one drain runs at a time; a second call while one is active
        returns immediately. Failed entries move to the tail of the queue
        and are dropped after max_retries attempts.
        """
        if self._is_draining or not self._queue:
            return

        self._is_draining = True
        logger.info(f"Draining retry queue ({len(self._queue)} queued)")
        try:
            while self._queue and self._state.status == SessionStatus.READY:
                item = self._queue.popleft()

                try:
                    await self._deliver(item.destination, item.body)
                except NotReadyError:
                    self._queue.appendleft(item)
                    break
                except InvalidDestinationError as e:
                    await self._report_drop(item, str(e))
                except SessionClientError as e:
                    item.retry_count += 1
                    if item.retry_count < self.config.max_retries:
                        self._queue.append(item)
                    else:
                        await self._report_drop(item, str(e))

                await asyncio.sleep(self.config.queue_retry_delay_seconds)
        finally:
            self._is_draining = False

    # ----- Internals -----

    async def _deliver(self, destination: str, body: str) -> DeliveryResult:
        """Send once, without touching the retry queue."""
        status = self._state.status
        if status != SessionStatus.READY or self._transport is None:
            raise NotReadyError(
                f"WhatsApp client is not ready (status: {status.value}). "
                "Queue message and retry.",
                status=status.value,
            )

        transport = self._transport
        try:
            address = format_address(destination, self.config.address_suffix)

            registered = await self._call_transport(
                transport.is_registered(address), "registration check"
            )
            if not registered:
                raise InvalidDestinationError(
                    f"Phone number {destination} is not registered on WhatsApp"
                )

            message_id = await self._call_transport(
                transport.send_text(address, body), "send"
            )
        except SessionClientError as e:
            self._state.last_error = str(e)
            raise

        self._state.messages_sent += 1
        logger.info(f"Message {message_id} sent to {destination}")
        return DeliveryResult(
            id=message_id,
            destination=clean_number(destination),
            body=body,
            status="sent",
        )

    async def _call_transport(self, awaitable: Any, operation: str) -> Any:
        """Await a transport call under the send timeout, wrapping failures."""
        timeout = self.config.send_timeout_seconds
        try:
            return await run_with_timeout(awaitable, timeout)
        except asyncio.TimeoutError as e:
            raise SendTimeoutError(
                f"Failed to send message: {operation} timed out after {timeout}s"
            ) from e
        except Exception as e:
            raise TransportError(f"Failed to send message: {e}") from e

    async def _report_drop(self, item: OutboundMessage, error: str) -> None:
        """Log a permanent delivery failure and publish it."""
        failure = DeliveryFailure(message=item.model_copy(), error=error)
        handle_exception(
            TransportError(
                f"Dropped message to {item.destination} after "
                f"{item.retry_count} retries: {error}"
            ),
            context="retry_queue",
            details={"message": item.model_dump(by_alias=True)},
        )
        await self._events.emit(DELIVERY_FAILED, failure)

    async def _set_state(self, **changes: Any) -> None:
        """Apply a lifecycle change and publish the new state."""
        for key, value in changes.items():
            setattr(self._state, key, value)
        if self._state.status != SessionStatus.READY:
            self._state.address = None
        await self._events.emit(STATUS, self.get_state())

    def _register_lifecycle_handlers(self, transport: Transport) -> None:
        """Subscribe to a transport, ignoring events once it is replaced."""

        def owned(handler: Callable) -> Callable:
            async def guarded(payload: Any) -> None:
                if self._transport is transport:
                    await handler(payload)
            return guarded

        transport.on("qr", owned(self._handle_qr))
        transport.on("ready", owned(self._handle_ready))
        transport.on("disconnected", owned(self._handle_disconnected))
        transport.on("auth_failure", owned(self._handle_auth_failure))
        transport.on("message", owned(self._handle_message))
        transport.on("message_create", owned(self._handle_message_create))

    async def _start_transport(self, transport: Transport) -> None:
        """Run transport startup; failures move the session to error."""
        try:
            await run_with_timeout(transport.initialize(), self.config.startup_timeout_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._transport is transport:
                message = str(e) or f"Startup timed out after {self.config.startup_timeout_seconds}s"
                await self._set_state(status=SessionStatus.ERROR, last_error=message)
                handle_exception(e, context="transport_startup")

    async def _dispose_transport(self) -> None:
        """Destroy the owned transport and forget it."""
        transport, self._transport = self._transport, None

        if self._startup_task and not self._startup_task.done():
            self._startup_task.cancel()
        self._startup_task = None

        try:
            await run_with_timeout(transport.destroy(), self.config.send_timeout_seconds)
        except Exception as e:
            logger.warning(f"Error destroying transport: {e}")

    async def _handle_qr(self, qr: Any) -> None:
        logger.info("Scan this QR code with your WhatsApp")
        if self.config.log_qr and isinstance(qr, str):
            logger.info("\n" + render_for_environment(qr, self.config.environment))
        await self._events.emit(QR, qr)

    async def _handle_ready(self, info: Any) -> None:
        address = info.get("address") if isinstance(info, dict) else None
        await self._set_state(status=SessionStatus.READY, address=address)
        logger.info(f"WhatsApp client is ready ({address})")

        if self._queue:
            await self._tasks.create_task(self.process_message_queue(), name="queue_drain")

    async def _handle_disconnected(self, reason: Any) -> None:
        await self._set_state(status=SessionStatus.DISCONNECTED, address=None)
        logger.warning(f"WhatsApp client disconnected: {reason}")

    async def _handle_auth_failure(self, message: Any) -> None:
        error = str(message) if message else "Authentication failed"
        await self._set_state(status=SessionStatus.ERROR, last_error=error, address=None)
        handle_exception(
            AuthFailureError(error), context="auth", details={"client_id": self.config.client_id}
        )

    async def _handle_message(self, message: Any) -> None:
        await self._events.emit(MESSAGE, message)

    async def _handle_message_create(self, message: Any) -> None:
        await self._events.emit(MESSAGE_CREATE, message)
