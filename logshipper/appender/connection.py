"""
Broker connection management.

Owns the AMQP connection, the channel, the exchange and the optional queue
binding for one appender. Connection setup runs in a background task; the
manager only accepts publishes once the exchange (and the queue binding,
when configured) has been declared.

State transitions:
    absent -> connecting -> ready
    connecting | ready -> disconnected   (disconnect, failure, broker drop)
    any -> connecting                    (configure; prior connection torn down first)
"""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple
from urllib.parse import urlsplit, urlunsplit

import aio_pika
from aio_pika.abc import AbstractConnection, AbstractExchange
from aio_pika.exceptions import AMQPError

from logshipper.appender.options import (
    ConnectionOptions,
    ExchangeOptions,
    PublishOptions,
    QueueOptions,
)
from logshipper.utils.logging import get_logger

logger = get_logger(__name__)

Connector = Callable[..., Awaitable[AbstractConnection]]

BROKER_ERRORS = (AMQPError, OSError, RuntimeError, asyncio.TimeoutError)


class ConnectionState(str, Enum):
    """Broker connection states."""

    ABSENT = "absent"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"


def redact_url(url: str) -> str:
    """Hide the password in an AMQP URL for logging."""
    parts = urlsplit(url)
    if parts.password is None:
        return url
    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return urlunsplit(parts._replace(netloc=netloc))


def encode_payload(payload: Any) -> Tuple[bytes, str]:
    """
    Encode an outbound payload as a message body.

    Returns:
        (body, content_type)
    """
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload), "application/octet-stream"
    if isinstance(payload, str):
        return payload.encode("utf-8"), "text/plain"
    return json.dumps(payload, default=str).encode("utf-8"), "application/json"


class ConnectionManager:
    """
    Connection lifecycle for one appender.

    Attributes:
        on_ready: Called (no arguments) every time the manager becomes ready
    """

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        connector: Optional[Connector] = None,
        on_ready: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize connection manager.

        Args:
            loop: Event loop to run connection tasks on (default: running loop)
            connector: Coroutine function opening a connection (default: aio_pika.connect)
            on_ready: Readiness listener
        """
        self._loop = loop or asyncio.get_running_loop()
        self._connector = connector or aio_pika.connect
        self.on_ready = on_ready

        self._state = ConnectionState.ABSENT
        self._connection: Optional[AbstractConnection] = None
        self._exchange: Optional[AbstractExchange] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._ready_event = asyncio.Event()
        self._closing: Set[asyncio.Future] = set()

        self._published = 0
        self._dropped = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is ConnectionState.READY and self._exchange is not None

    @property
    def has_connection(self) -> bool:
        """True once configure() has been called at least once."""
        return self._state is not ConnectionState.ABSENT

    def configure(
        self,
        connection: ConnectionOptions,
        exchange: ExchangeOptions,
        queue: Optional[QueueOptions] = None,
        binding_key: str = "msg",
    ) -> None:
        """
        Start (re)connecting with new options.

        Returns immediately. A prior connection is closed before the new
        one is opened.

        Args:
            connection: Connection parameters
            exchange: Exchange to declare
            queue: Queue to declare and bind, if any
            binding_key: Routing key for the queue binding
        """
        previous = self._detach()

        if previous is not None:
            logger.info(
                "Reconfiguring, closing previous connection",
                url=redact_url(connection.url),
            )
            self._schedule_close(previous)

        self._state = ConnectionState.CONNECTING
        self._connect_task = self._loop.create_task(
            self._establish(connection, exchange, queue, binding_key)
        )

    def teardown(self) -> None:
        """Drop the connection without waiting for it to close."""
        if self._state is ConnectionState.ABSENT:
            return

        connection = self._detach()
        self._state = ConnectionState.DISCONNECTED

        if connection is not None:
            logger.info("Disconnecting from broker", published=self._published)
            self._schedule_close(connection)

    async def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the manager is ready.

        Args:
            timeout: Max seconds to wait (None = wait forever)

        Returns:
            True if ready, False on timeout
        """
        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return self.ready

    async def publish(
        self,
        routing_key: str,
        payload: Any,
        options: PublishOptions,
    ) -> bool:
        """
        Publish one message to the exchange.

        Silently does nothing while the exchange is not ready. Broker errors
        are logged and the message is dropped.

        Returns:
            True if the message was handed to the broker
        """
        exchange = self._exchange
        if not self.ready or exchange is None:
            return False

        body, content_type = encode_payload(payload)
        message = aio_pika.Message(
            body=body,
            content_type=content_type,
            delivery_mode=aio_pika.DeliveryMode(options.delivery_mode),
        )

        try:
            await exchange.publish(
                message,
                routing_key=routing_key,
                mandatory=options.mandatory,
            )
        except BROKER_ERRORS as e:
            self._dropped += 1
            logger.warning(
                "Publish failed, message dropped",
                exchange=exchange.name,
                routing_key=routing_key,
                error=str(e),
            )
            return False

        self._published += 1
        return True

    async def disconnect(self) -> None:
        """Close the connection. Safe to call repeatedly or with no connection."""
        self.teardown()

        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get connection statistics.

        Returns:
            Dictionary with state and message counters
        """
        return {
            "state": self._state.value,
            "published": self._published,
            "dropped": self._dropped,
            "exchange": self._exchange.name if self._exchange is not None else None,
        }

    def _detach(self) -> Optional[AbstractConnection]:
        """Forget the current connection and return it for closing."""
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = None

        connection, self._connection = self._connection, None
        self._exchange = None
        self._ready_event.clear()
        return connection

    async def _establish(
        self,
        options: ConnectionOptions,
        exchange_options: ExchangeOptions,
        queue_options: Optional[QueueOptions],
        binding_key: str,
    ) -> None:
        """Wait for prior connections to close, then connect and declare topology."""
        if self._closing:
            await asyncio.shield(
                asyncio.gather(*list(self._closing), return_exceptions=True)
            )

        url = redact_url(options.url)
        kwargs: Dict[str, Any] = {"client_properties": dict(options.client_properties)}
        if options.timeout is not None:
            kwargs["timeout"] = options.timeout

        try:
            connection = await self._connector(options.url, **kwargs)
        except BROKER_ERRORS as e:
            self._state = ConnectionState.DISCONNECTED
            logger.error("Broker connection failed", url=url, error=str(e))
            return

        self._connection = connection
        connection.close_callbacks.add(self._on_connection_closed)

        try:
            channel = await connection.channel(publisher_confirms=options.publisher_confirms)
            exchange = await channel.declare_exchange(
                exchange_options.name,
                type=aio_pika.ExchangeType(exchange_options.type),
                durable=exchange_options.durable,
                auto_delete=exchange_options.auto_delete,
            )

            if queue_options is not None:
                queue = await channel.declare_queue(
                    queue_options.name,
                    durable=queue_options.durable,
                    exclusive=queue_options.exclusive,
                    auto_delete=queue_options.auto_delete,
                    arguments=dict(queue_options.arguments),
                )
                await queue.bind(exchange, routing_key=binding_key)

        except BROKER_ERRORS as e:
            logger.error(
                "Exchange setup failed",
                url=url,
                exchange=exchange_options.name,
                error=str(e),
            )
            self._detach_failed(connection)
            await self._close(connection)
            return

        self._exchange = exchange
        self._state = ConnectionState.READY
        self._ready_event.set()

        logger.info(
            "Broker connection ready",
            url=url,
            exchange=exchange_options.name,
            exchange_type=exchange_options.type,
            queue=queue_options.name if queue_options is not None else None,
        )

        if self.on_ready is not None:
            self.on_ready()

    def _detach_failed(self, connection: AbstractConnection) -> None:
        if self._connection is connection:
            self._connection = None
        self._state = ConnectionState.DISCONNECTED

    def _on_connection_closed(self, sender: Any, exc: Optional[BaseException] = None) -> None:
        """Broker-side close of the current connection."""
        if sender is not self._connection:
            return

        self._connection = None
        self._exchange = None
        self._ready_event.clear()
        self._state = ConnectionState.DISCONNECTED

        logger.warning(
            "Broker connection lost",
            error=str(exc) if exc is not None else None,
        )

    def _schedule_close(self, connection: AbstractConnection) -> asyncio.Task:
        task = self._loop.create_task(self._close(connection))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return task

    async def _close(self, connection: AbstractConnection) -> None:
        if connection.is_closed:
            return
        try:
            await connection.close()
        except BROKER_ERRORS as e:
            logger.warning("Error closing broker connection", error=str(e))
