"""
Shared fixtures: an in-memory stand-in for the AMQP broker.

FakeBroker.connect has the same call shape as aio_pika.connect and returns
connection objects that record everything the appender does to them.
"""

import asyncio
import json
from typing import Any, List, Optional, Tuple

import pytest

from logshipper.appender import lifecycle as lifecycle_module


class FakeCallbacks:
    """Minimal stand-in for aio_pika's CallbackCollection."""

    def __init__(self, sender):
        self.sender = sender
        self.callbacks = []

    def add(self, callback) -> None:
        self.callbacks.append(callback)

    def fire(self, exc: Optional[BaseException] = None) -> None:
        for callback in list(self.callbacks):
            callback(self.sender, exc)


class FakeExchange:
    def __init__(self, broker: "FakeBroker", name: str, type, durable: bool, auto_delete: bool):
        self.broker = broker
        self.name = name
        self.type = type
        self.durable = durable
        self.auto_delete = auto_delete

    async def publish(self, message, routing_key: str, mandatory: bool = True, **kwargs):
        if self.broker.fail_publish:
            raise ConnectionResetError("connection reset by peer")
        self.broker.messages.append((self.name, routing_key, message, mandatory))
        self.broker.events.append(("publish", message.body))


class FakeQueue:
    def __init__(self, broker: "FakeBroker", name: str, **kwargs: Any):
        self.broker = broker
        self.name = name
        self.kwargs = kwargs

    async def bind(self, exchange: FakeExchange, routing_key: str = None, **kwargs):
        self.broker.bindings.append((self.name, exchange.name, routing_key))


class FakeChannel:
    def __init__(self, connection: "FakeConnection", publisher_confirms: bool):
        self.connection = connection
        self.publisher_confirms = publisher_confirms

    async def declare_exchange(self, name: str, type=None, durable: bool = False,
                               auto_delete: bool = False, **kwargs) -> FakeExchange:
        exchange = FakeExchange(self.connection.broker, name, type, durable, auto_delete)
        self.connection.broker.exchanges.append(exchange)
        return exchange

    async def declare_queue(self, name: str, **kwargs) -> FakeQueue:
        queue = FakeQueue(self.connection.broker, name, **kwargs)
        self.connection.broker.queues.append(queue)
        return queue


class FakeConnection:
    def __init__(self, broker: "FakeBroker", index: int, url: str, kwargs: dict):
        self.broker = broker
        self.index = index
        self.url = url
        self.kwargs = kwargs
        self.is_closed = False
        self.close_count = 0
        self.close_callbacks = FakeCallbacks(self)
        self.channels: List[FakeChannel] = []

    async def channel(self, publisher_confirms: bool = True) -> FakeChannel:
        channel = FakeChannel(self, publisher_confirms)
        self.channels.append(channel)
        return channel

    async def close(self) -> None:
        self.close_count += 1
        self.is_closed = True
        self.broker.events.append(("close", self.index))
        self.close_callbacks.fire(None)

    def drop(self, exc: Optional[BaseException] = None) -> None:
        """Simulate the broker closing the connection."""
        self.is_closed = True
        self.close_callbacks.fire(exc or ConnectionResetError("broker went away"))


class FakeBroker:
    """Records connections, topology and published messages."""

    def __init__(self):
        self.connections: List[FakeConnection] = []
        self.exchanges: List[FakeExchange] = []
        self.queues: List[FakeQueue] = []
        self.bindings: List[Tuple[str, str, str]] = []
        self.messages: List[tuple] = []
        self.events: List[tuple] = []
        self.fail_connect = False
        self.fail_publish = False
        self.gate: Optional[asyncio.Event] = None

    async def connect(self, url: str, **kwargs) -> FakeConnection:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_connect:
            raise ConnectionRefusedError("connection refused")
        connection = FakeConnection(self, len(self.connections), url, kwargs)
        self.connections.append(connection)
        self.events.append(("connect", connection.index))
        return connection

    def hold(self) -> asyncio.Event:
        """Block new connections until the returned event is set."""
        self.gate = asyncio.Event()
        return self.gate

    @property
    def bodies(self) -> List[Any]:
        """Published message bodies, JSON-decoded where possible."""
        decoded = []
        for _, _, message, _ in self.messages:
            if message.content_type == "application/json":
                decoded.append(json.loads(message.body))
            else:
                decoded.append(message.body.decode("utf-8"))
        return decoded

    @property
    def data(self) -> List[Any]:
        """The "data" field of every published default-shaped message."""
        return [body["data"] for body in self.bodies]


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def settle():
    """Let pending loop callbacks and tasks run."""
    async def _settle(rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)
    return _settle


@pytest.fixture(autouse=True)
def no_atexit(monkeypatch):
    """Keep test appenders out of the real interpreter exit hooks."""
    registered = []
    monkeypatch.setattr(lifecycle_module.atexit, "register", registered.append)
    monkeypatch.setattr(lifecycle_module.atexit, "unregister", registered.remove)
    return registered
