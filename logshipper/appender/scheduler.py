"""
Publish scheduling.

Decides when buffered events are flushed to the broker:
- send_interval == 0: a flush pass starts for every incoming event
- send_interval > 0: events are coalesced; one timer is armed per window
  and a single flush pass publishes everything buffered when it fires

Flush passes are serialized, so concurrent triggers (readiness, timer,
new events) never publish an event twice or out of order.
"""

import asyncio
from typing import Optional, Set

from logshipper.appender.buffer import EventBuffer
from logshipper.appender.connection import ConnectionManager
from logshipper.appender.event import LogEvent, normalize
from logshipper.appender.options import AppenderOptions
from logshipper.utils.logging import get_logger

logger = get_logger(__name__)


class PublishScheduler:
    """
    Drives publication of buffered events.

    Thread Safety:
        Not thread-safe. All methods must be called on the event loop thread.
    """

    def __init__(
        self,
        options: AppenderOptions,
        buffer: EventBuffer,
        connection: ConnectionManager,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Initialize scheduler.

        Args:
            options: Resolved appender options
            buffer: Buffer shared with the appender
            connection: Connection manager used for publishing
            loop: Event loop for timers and flush tasks (default: running loop)
        """
        self.options = options
        self.buffer = buffer
        self.connection = connection
        self._loop = loop or asyncio.get_running_loop()

        self._send_timer: Optional[asyncio.TimerHandle] = None
        self._flush_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of buffered events."""
        return len(self.buffer)

    @property
    def timer_pending(self) -> bool:
        return self._send_timer is not None

    def apply(self, options: AppenderOptions) -> None:
        """Use new options for subsequent events and flushes."""
        self.options = options

    def on_event(self, event: LogEvent) -> None:
        """
        Accept an event: normalize, buffer, then flush or schedule a flush.

        Args:
            event: Incoming event
        """
        normalize(event, self.options.layout)
        self.buffer.append(event)

        if self.options.batched:
            self.schedule_flush()
        else:
            self.request_flush()

    def schedule_flush(self) -> None:
        """Arm the send timer unless one is already pending."""
        if self._send_timer is not None:
            return

        self._send_timer = self._loop.call_later(
            self.options.send_interval,
            self._on_send_timer,
        )

    def request_flush(self) -> None:
        """Start a flush pass on the loop without waiting for it."""
        task = self._loop.create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self) -> int:
        """
        Publish buffered events, oldest first, while the connection is ready.

        A no-op when the connection is not ready; events stay buffered for
        the next pass.

        Returns:
            Number of events handed to the connection
        """
        async with self._flush_lock:
            count = 0
            if not self.connection.ready:
                return count

            # drain_all() pops lazily; breaking out leaves the rest buffered
            for event in self.buffer.drain_all():
                options = self.options

                try:
                    payload = options.log_event_interceptor(event, options.additional_info)
                except Exception as e:
                    logger.error(
                        "Log event interceptor failed, event dropped",
                        category=event.category,
                        error=str(e),
                    )
                    continue

                await self.connection.publish(
                    options.publish.routing_key,
                    payload,
                    options.publish,
                )
                count += 1

                if not self.connection.ready:
                    break

            if count:
                logger.debug("Flushed events", count=count, remaining=len(self.buffer))

            return count

    async def drain(self) -> None:
        """Wait for flush passes already started to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_send_timer(self) -> None:
        self._send_timer = None
        self.request_flush()
