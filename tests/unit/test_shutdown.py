"""Tests for the termination signal and shutdown coordinator."""

import asyncio
import time

import pytest

from stream_ingestor.errors import WriteError
from stream_ingestor.shutdown import (
    ExitReason,
    ShutdownCoordinator,
    ShutdownOutcome,
    TerminationSignal,
)


class RecordingConnection:
    """Connection double that records close frames."""

    def __init__(self, on_close=None, fail: bool = False):
        self.close_frames = 0
        self.on_close = on_close
        self.fail = fail

    async def send_close(self, reason: str = ""):
        self.close_frames += 1
        if self.fail:
            raise WriteError("broken pipe")
        if self.on_close:
            self.on_close()


class TestTerminationSignal:

    def test_fires_once(self):
        signal = TerminationSignal()

        assert signal.fire(ExitReason.READ_ERROR) is True
        assert signal.fire(ExitReason.EXTERNAL_CLOSE) is False
        assert signal.fire_count == 1
        assert signal.reason is ExitReason.READ_ERROR

    @pytest.mark.asyncio
    async def test_fire_without_waiter_does_not_block(self):
        signal = TerminationSignal()
        signal.fire(ExitReason.EXTERNAL_CLOSE)
        assert signal.fired

    @pytest.mark.asyncio
    async def test_wait_times_out(self):
        assert await TerminationSignal().wait(0.01) is False

    @pytest.mark.asyncio
    async def test_wait_returns_when_fired(self):
        signal = TerminationSignal()
        asyncio.get_running_loop().call_later(0.01, signal.fire, ExitReason.READ_ERROR)
        assert await signal.wait(1.0) is True


class TestShutdownCoordinator:

    @pytest.mark.asyncio
    async def test_loop_exit_first(self):
        termination = TerminationSignal()
        connection = RecordingConnection()
        coordinator = ShutdownCoordinator(connection, termination, asyncio.Event(), timeout=1.0)

        termination.fire(ExitReason.EXTERNAL_CLOSE)
        outcome = await coordinator.run()

        assert outcome is ShutdownOutcome.LOOP_EXITED
        assert connection.close_frames == 0

    @pytest.mark.asyncio
    async def test_interrupt_acknowledged(self):
        termination = TerminationSignal()
        interrupt = asyncio.Event()
        connection = RecordingConnection(
            on_close=lambda: asyncio.get_running_loop().call_soon(
                termination.fire, ExitReason.EXTERNAL_CLOSE
            )
        )
        coordinator = ShutdownCoordinator(connection, termination, interrupt, timeout=5.0)

        interrupt.set()
        started = time.monotonic()
        outcome = await coordinator.run()

        assert outcome is ShutdownOutcome.INTERRUPT_ACKNOWLEDGED
        assert connection.close_frames == 1
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_interrupt_timeout_with_hung_loop(self):
        termination = TerminationSignal()
        interrupt = asyncio.Event()
        connection = RecordingConnection()
        coordinator = ShutdownCoordinator(connection, termination, interrupt, timeout=0.1)

        interrupt.set()
        started = time.monotonic()
        outcome = await coordinator.run()

        assert outcome is ShutdownOutcome.INTERRUPT_TIMEOUT
        assert connection.close_frames == 1
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_close_failure_stops_waiting(self):
        termination = TerminationSignal()
        interrupt = asyncio.Event()
        connection = RecordingConnection(fail=True)
        coordinator = ShutdownCoordinator(connection, termination, interrupt, timeout=10.0)

        interrupt.set()
        started = time.monotonic()
        outcome = await coordinator.run()

        assert outcome is ShutdownOutcome.CLOSE_FAILED
        assert time.monotonic() - started < 1.0
