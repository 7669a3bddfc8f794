"""
Event buffer: pending log events awaiting publication.
"""

from collections import deque
from typing import Deque, Iterator

from logshipper.appender.event import LogEvent


class EventBuffer:
    """
    Unbounded FIFO of pending events.

    Producers only append; the publish scheduler is the only consumer.
    Both run on the event loop thread, so no locking is needed here.
    The buffer belongs to the appender, not to a connection, and keeps
    its contents across reconnections.
    """

    def __init__(self):
        self._events: Deque[LogEvent] = deque()

    def append(self, event: LogEvent) -> None:
        """Add event at the back."""
        self._events.append(event)

    def pop(self) -> LogEvent:
        """
        Remove and return the oldest event.

        Raises:
            IndexError: If the buffer is empty
        """
        return self._events.popleft()

    def drain_all(self) -> Iterator[LogEvent]:
        """Yield events oldest first until the buffer is empty."""
        while self._events:
            yield self._events.popleft()

    def __len__(self) -> int:
        return len(self._events)

    def __bool__(self) -> bool:
        return bool(self._events)
