"""Ingestion loop: receive, decode, filter and dispatch streaming events."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .decoder import decode, is_admissible
from .errors import DecodeError, ReadError, StoreError, TransportClosedError
from .shutdown import ExitReason, TerminationSignal
from .sinks.base import EventSink


logger = logging.getLogger(__name__)


class StreamProcessor:
    """
    Forwards admissible events from the connection to the sink.

    Malformed and rejected messages are logged and skipped. The loop ends
    when the connection fails or is closed, or when the sink fails; the
    termination signal fires exactly once on every exit.
    """

    def __init__(self, connection, sink: EventSink, termination: TerminationSignal):
        self.connection = connection
        self.sink = sink
        self.termination = termination
        self.exit_reason: Optional[ExitReason] = None
        self.dispatching = False

        self.stats = {
            "messages_received": 0,
            "events_stored": 0,
            "messages_rejected": 0,
            "decode_errors": 0,
            "last_message_time": None,
            "start_time": datetime.now(timezone.utc)
        }

    async def run(self) -> ExitReason:
        """
        Run until the connection ends.

        Raises:
            StoreError: the sink failed; the loop stops after signalling
        """
        logger.info("Starting stream processor")
        reason = ExitReason.READ_ERROR

        try:
            while True:
                try:
                    raw_message = await self.connection.receive()
                except TransportClosedError as e:
                    logger.info(f"Connection closed: {e}")
                    reason = ExitReason.EXTERNAL_CLOSE
                    break
                except ReadError as e:
                    logger.warning(f"Read error: {e}")
                    reason = ExitReason.READ_ERROR
                    break

                try:
                    await self._process_message(raw_message)
                except StoreError as e:
                    logger.error(f"Failed to store event: {e}")
                    reason = ExitReason.SINK_FAILURE
                    raise
        except asyncio.CancelledError:
            # Cancelled during teardown while blocked on a dead connection
            reason = ExitReason.EXTERNAL_CLOSE
            raise
        finally:
            self.exit_reason = reason
            self.termination.fire(reason)
            logger.info(f"Stream processor stopped: {self.get_stats()}")

        return reason

    async def _process_message(self, raw_message):
        self.stats["messages_received"] += 1
        self.stats["last_message_time"] = datetime.now(timezone.utc)

        try:
            envelope = decode(raw_message)
        except DecodeError as e:
            self.stats["decode_errors"] += 1
            logger.warning(f"Failed to decode message: {e}; raw: {e.raw!r}")
            return

        if not is_admissible(envelope):
            self.stats["messages_rejected"] += 1
            logger.warning(f"recv error: {envelope.raw}")
            return

        self.dispatching = True
        try:
            ack = await self.sink.store(envelope.event)
        finally:
            self.dispatching = False
        self.stats["events_stored"] += 1
        logger.info(f"Stored event: {ack}")
        logger.debug(f"recv: {envelope.raw}")

    def get_stats(self) -> Dict[str, Any]:
        """Get processor statistics."""
        uptime = (datetime.now(timezone.utc) - self.stats["start_time"]).total_seconds()

        stats = self.stats.copy()
        stats.update({
            "uptime_seconds": uptime,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
        })
        return stats
