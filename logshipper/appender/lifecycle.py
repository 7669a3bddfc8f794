"""
Shutdown handling: final flush and disconnect.
"""

import asyncio
import atexit
import signal
from typing import Callable, Iterable, Optional

from logshipper.appender.connection import ConnectionManager, ConnectionState
from logshipper.appender.scheduler import PublishScheduler
from logshipper.utils.logging import get_logger

logger = get_logger(__name__)


class ShutdownController:
    """
    Guarantees one last flush-and-disconnect.

    shutdown() may be awaited directly. register() arranges for it to run
    once more at the end of the process:

    - when the loop is torn down by asyncio.run(), from a task that waits
      for the teardown cancellation while the loop can still run I/O
    - at interpreter exit, for loops that are stopped but not closed
    """

    def __init__(
        self,
        scheduler: PublishScheduler,
        connection: ConnectionManager,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.scheduler = scheduler
        self.connection = connection
        self._loop = loop or asyncio.get_running_loop()
        self._registered = False
        self._shutdown_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None

    async def shutdown(self, callback: Optional[Callable[[], None]] = None) -> None:
        """
        Flush what can be flushed, disconnect, then call callback.

        Safe to call more than once.

        Args:
            callback: Called when shutdown completes
        """
        if not self.connection.has_connection:
            logger.debug("Shutdown requested with no connection")
            if callback is not None:
                callback()
            return

        logger.info(
            "Shutting down",
            pending=self.scheduler.pending,
            state=self.connection.state.value,
        )

        await self.scheduler.drain()
        await self.scheduler.flush()

        await self.connection.disconnect()

        if self.scheduler.pending:
            logger.warning("Events left unpublished at shutdown", count=self.scheduler.pending)

        if callback is not None:
            callback()

    def register(self) -> None:
        """Run shutdown() at loop teardown and interpreter exit. Only the first call registers."""
        if self._registered:
            return
        atexit.register(self._on_exit)
        self._registered = True

        if self._on_loop():
            self._teardown_task = self._loop.create_task(self._flush_on_teardown())

    def unregister(self) -> None:
        if self._registered:
            self._registered = False
            atexit.unregister(self._on_exit)
            if self._teardown_task is not None:
                self._teardown_task.cancel()
                self._teardown_task = None

    def install_signal_handlers(
        self,
        signals: Iterable[signal.Signals] = (signal.SIGTERM, signal.SIGINT),
        on_complete: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Schedule shutdown() when one of signals is received.

        Args:
            signals: Signals to handle
            on_complete: Callback passed to shutdown(), e.g. to stop the loop
        """
        for sig in signals:
            self._loop.add_signal_handler(sig, self._on_signal, sig, on_complete)

    def _on_signal(self, sig: signal.Signals, on_complete: Optional[Callable[[], None]]) -> None:
        logger.info("Received signal", signal=sig.name)
        if self._shutdown_task is None or self._shutdown_task.done():
            self._shutdown_task = self._loop.create_task(self.shutdown(on_complete))

    def _needs_final_flush(self) -> bool:
        return bool(self.scheduler.pending) or self.connection.state not in (
            ConnectionState.ABSENT,
            ConnectionState.DISCONNECTED,
        )

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    async def _flush_on_teardown(self) -> None:
        """Wait for the loop's teardown cancellation, then shut down."""
        try:
            await self._loop.create_future()
        except asyncio.CancelledError:
            if self._registered and self._needs_final_flush():
                logger.info("Event loop shutting down, running final flush")
                await self.shutdown()
            raise

    def _on_exit(self) -> None:
        if not self._needs_final_flush():
            return

        if self._loop.is_closed():
            logger.warning(
                "Event loop closed before exit, final flush skipped",
                pending=self.scheduler.pending,
            )
            return

        if self._loop.is_running():
            logger.warning(
                "Event loop still running at exit, final flush skipped",
                pending=self.scheduler.pending,
            )
            return

        self._loop.run_until_complete(self.shutdown())
