"""Coordination between the ingestion loop and process shutdown."""

import asyncio
import logging
import signal
from enum import Enum
from typing import Optional

from .errors import WriteError

logger = logging.getLogger(__name__)


class ExitReason(Enum):
    """Why the ingestion loop stopped."""
    READ_ERROR = "read_error"
    EXTERNAL_CLOSE = "external_close"
    SINK_FAILURE = "sink_failure"


class ShutdownOutcome(Enum):
    """Which path the coordinator took."""
    LOOP_EXITED = "loop_exited"
    INTERRUPT_ACKNOWLEDGED = "interrupt_acknowledged"
    INTERRUPT_TIMEOUT = "interrupt_timeout"
    CLOSE_FAILED = "close_failed"


class TerminationSignal:
    """
    One-shot notification that the ingestion loop has exited.

    ``fire`` never blocks and only the first call has any effect, so the loop
    can always finish even if nobody is waiting.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[ExitReason] = None
        self.fire_count = 0

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def fire(self, reason: ExitReason) -> bool:
        """Record the exit. Returns False if the signal had already fired."""
        if self._event.is_set():
            logger.debug(f"Termination already signalled, ignoring {reason.value}")
            return False
        self.reason = reason
        self.fire_count += 1
        self._event.set()
        return True

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait until fired. Returns False if ``timeout`` expired first."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


def install_interrupt_handler(loop: asyncio.AbstractEventLoop,
                              interrupt: asyncio.Event) -> None:
    """Set ``interrupt`` when the process receives SIGINT."""
    def signal_handler():
        logger.info("Received interrupt, initiating shutdown")
        interrupt.set()

    loop.add_signal_handler(signal.SIGINT, signal_handler)


def remove_interrupt_handler(loop: asyncio.AbstractEventLoop) -> None:
    loop.remove_signal_handler(signal.SIGINT)


class ShutdownCoordinator:
    """
    Supervises termination of the connection and the ingestion loop.

    Races the interrupt against the termination signal. On interrupt it sends
    a close frame and gives the loop ``timeout`` seconds to notice; either way
    it returns so the caller can tear everything down.
    """

    def __init__(self, connection, termination: TerminationSignal,
                 interrupt: asyncio.Event, timeout: float = 1.0):
        self.connection = connection
        self.termination = termination
        self.interrupt = interrupt
        self.timeout = timeout

    async def run(self) -> ShutdownOutcome:
        interrupt_task = asyncio.create_task(self.interrupt.wait())
        termination_task = asyncio.create_task(self.termination.wait())

        try:
            await asyncio.wait(
                {interrupt_task, termination_task},
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (interrupt_task, termination_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(interrupt_task, termination_task, return_exceptions=True)

        # Prefer the loop's exit if both happened at once
        if self.termination.fired:
            logger.info(f"Ingestion loop exited ({self.termination.reason.value})")
            return ShutdownOutcome.LOOP_EXITED

        logger.info("Interrupt received, closing connection")
        try:
            await self.connection.send_close()
        except WriteError as e:
            logger.error(f"Write close error: {e}")
            return ShutdownOutcome.CLOSE_FAILED

        if await self.termination.wait(self.timeout):
            logger.info("Ingestion loop acknowledged shutdown")
            return ShutdownOutcome.INTERRUPT_ACKNOWLEDGED

        logger.warning(f"Ingestion loop did not stop within {self.timeout}s, proceeding with teardown")
        return ShutdownOutcome.INTERRUPT_TIMEOUT
