"""
logshipper - ship Python log records to an AMQP exchange.

Log records are buffered in memory and published to a RabbitMQ (AMQP 0-9-1)
exchange, either one by one or coalesced on a send interval. Features:
- stdlib logging handler (AmqpHandler)
- exchange declaration with optional queue binding
- immediate or batched delivery, strict FIFO order
- reconfiguration without losing buffered events
- final flush and disconnect on shutdown
"""

__version__ = "0.1.0"

from logshipper.appender import AmqpAppender, ConfigError, LogEvent, resolve_options
from logshipper.handler import AmqpHandler

__all__ = [
    "AmqpAppender",
    "AmqpHandler",
    "ConfigError",
    "LogEvent",
    "resolve_options",
]
