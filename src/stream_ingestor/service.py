"""Ingestor service: connects, runs the ingestion loop and tears down."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from .clients.stream_client import StreamConnection, build_stream_url, connect
from .config.settings import IngestorSettings, StreamConfig
from .shutdown import (
    ExitReason,
    ShutdownCoordinator,
    ShutdownOutcome,
    TerminationSignal,
    install_interrupt_handler,
    remove_interrupt_handler,
)
from .sinks.base import EventSink
from .sinks.postgres import PostgresEventSink
from .stream_processor import StreamProcessor


logger = logging.getLogger(__name__)

Connector = Callable[[str, StreamConfig], Awaitable[StreamConnection]]


@dataclass
class RunResult:
    """Outcome of one service run."""
    exit_reason: Optional[ExitReason]
    shutdown_outcome: ShutdownOutcome
    stats: Dict[str, Any] = field(default_factory=dict)


class IngestorService:
    """
    Streams events from the endpoint into the sink until the connection ends
    or the process is interrupted.

    The ingestion loop and the shutdown coordinator run as two tasks; both
    are finished before ``run`` returns.
    """

    def __init__(self, settings: IngestorSettings, sink: Optional[EventSink] = None,
                 connector: Optional[Connector] = None,
                 interrupt: Optional[asyncio.Event] = None):
        self.settings = settings
        self.sink = sink if sink is not None else PostgresEventSink(settings.sink)
        self.connector = connector or connect
        self.interrupt = interrupt
        self.processor: Optional[StreamProcessor] = None

    async def run(self) -> RunResult:
        """
        Raises:
            ConnectError: the streaming connection could not be opened
            StartupError: the sink could not be initialized
            StoreError: the sink failed while ingesting
        """
        url = build_stream_url(self.settings.stream)
        connection = await self.connector(url, self.settings.stream)

        async with connection:
            await self.sink.initialize()
            try:
                return await self._ingest(connection)
            finally:
                await self.sink.close()

    async def _ingest(self, connection: StreamConnection) -> RunResult:
        loop = asyncio.get_running_loop()
        interrupt = self.interrupt
        handler_installed = False
        if interrupt is None:
            interrupt = asyncio.Event()
            install_interrupt_handler(loop, interrupt)
            handler_installed = True

        termination = TerminationSignal()
        self.processor = StreamProcessor(connection, self.sink, termination)
        coordinator = ShutdownCoordinator(
            connection, termination, interrupt,
            timeout=self.settings.shutdown.timeout_seconds
        )

        processor_task = asyncio.create_task(self.processor.run())
        coordinator_task = asyncio.create_task(coordinator.run())
        try:
            outcome = await coordinator_task
        finally:
            if handler_installed:
                remove_interrupt_handler(loop)
            # Closing and draining the loop share one shutdown timeout
            deadline = loop.time() + self.settings.shutdown.timeout_seconds
            await connection.close()

        exit_reason = await self._finish_processor(processor_task, deadline)
        stats = self.processor.get_stats()
        logger.info(f"Ingestion finished: outcome={outcome.value}, stats={stats}")
        return RunResult(exit_reason=exit_reason, shutdown_outcome=outcome, stats=stats)

    async def _finish_processor(self, task: asyncio.Task, deadline: float) -> Optional[ExitReason]:
        """Wait for the loop to notice the closed connection."""
        loop = asyncio.get_running_loop()
        timeout = max(deadline - loop.time(), 0)

        while not task.done():
            await asyncio.wait({task}, timeout=timeout)
            if task.done():
                break
            # An in-flight store is allowed to finish on its own terms
            if not self.processor.dispatching:
                logger.warning("Stream processor still blocked after teardown, cancelling")
                task.cancel()
                break
            timeout = self.settings.shutdown.timeout_seconds

        try:
            return await task
        except asyncio.CancelledError:
            return self.processor.exit_reason
