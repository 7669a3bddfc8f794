"""AMQP appender: buffering, publish scheduling and connection lifecycle."""

from logshipper.appender.appender import AmqpAppender, discard_event
from logshipper.appender.buffer import EventBuffer
from logshipper.appender.connection import ConnectionManager, ConnectionState
from logshipper.appender.event import (
    LogEvent,
    RenderedText,
    SingleValue,
    ValueList,
    default_log_event_interceptor,
)
from logshipper.appender.lifecycle import ShutdownController
from logshipper.appender.options import AppenderOptions, ConfigError, resolve_options
from logshipper.appender.scheduler import PublishScheduler

__all__ = [
    "AmqpAppender",
    "AppenderOptions",
    "ConfigError",
    "ConnectionManager",
    "ConnectionState",
    "EventBuffer",
    "LogEvent",
    "PublishScheduler",
    "RenderedText",
    "ShutdownController",
    "SingleValue",
    "ValueList",
    "default_log_event_interceptor",
    "discard_event",
    "resolve_options",
]
