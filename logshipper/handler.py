"""
stdlib logging integration.

AmqpHandler plugs an AmqpAppender into the logging module:

    >>> handler = AmqpHandler({"exchange": {"name": "logs"}, "send_interval": 1})
    >>> logging.getLogger().addHandler(handler)
    >>> logging.getLogger("web").info("user %s logged in", "alice")
    ...
    >>> await handler.shutdown()

The handler must be created while its event loop is running, or be given
the loop explicitly. emit() may be called from any thread.
"""

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from logshipper.appender.appender import AmqpAppender, EventHandler
from logshipper.appender.connection import Connector
from logshipper.appender.event import LogEvent
from logshipper.utils.logging import is_internal_logger


def _not_internal(record: logging.LogRecord) -> bool:
    return not is_internal_logger(record.name)


class AmqpHandler(logging.Handler):
    """
    logging.Handler that forwards records to an AMQP exchange.

    Records from the shipper's own loggers are never forwarded.
    """

    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        level: int = logging.NOTSET,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        appender: Optional[AmqpAppender] = None,
        connector: Optional[Connector] = None,
    ):
        """
        Initialize handler and configure its appender.

        Args:
            config: Appender configuration
            level: Handler level
            loop: Event loop the appender runs on (default: running loop)
            appender: Existing appender to use instead of creating one
            connector: Connection factory for a newly created appender
        """
        super().__init__(level)
        self.appender = appender or AmqpAppender(loop=loop, connector=connector)
        self._target: EventHandler = self.appender.configure(config)
        self.addFilter(_not_internal)

    def reconfigure(self, config: Optional[Mapping[str, Any]]) -> None:
        """Reconfigure the underlying appender."""
        self._target = self.appender.configure(config)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent.from_record(record)
            if self._on_loop_thread():
                self._target(event)
            else:
                self.appender.loop.call_soon_threadsafe(self._target, event)
        except RuntimeError:
            # Event loop already closed; nowhere to deliver the event.
            return
        except Exception:
            self.handleError(record)

    async def shutdown(self, callback: Optional[Callable[[], None]] = None) -> None:
        """Flush and disconnect the underlying appender."""
        await self.appender.shutdown(callback)

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self.appender.loop
        except RuntimeError:
            return False

    def __repr__(self) -> str:
        level = logging.getLevelName(self.level)
        exchange = self.appender.options.exchange.name if self.appender.options else None
        return f"<{self.__class__.__name__} exchange={exchange} ({level})>"
