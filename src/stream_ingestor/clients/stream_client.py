"""Websocket transport for the push-event streaming endpoint."""

import asyncio
import logging
from typing import Optional, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    InvalidStatus,
    WebSocketException,
)
from websockets.protocol import State

from ..config.settings import StreamConfig
from ..errors import DialError, HandshakeError, ReadError, TransportClosedError, WriteError
from ..utils.logging import redact

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000


def build_stream_url(config: StreamConfig) -> str:
    """Render the endpoint URL, including the access key query parameter."""
    query = urlencode({"key": config.key or ""})
    return urlunsplit((config.scheme, config.host or "", config.path, query, ""))


def redact_url(url: str) -> str:
    """Return ``url`` with the access key masked, safe for logging."""
    parts = urlsplit(url)
    return urlunsplit(parts._replace(query=redact(parts.query)))


class StreamConnection:
    """
    A live websocket session.

    ``send_close`` starts the closing handshake at most once; ``close``
    releases the socket and may be called any number of times. Use the
    connection as an async context manager so ``close`` runs on every exit
    path.
    """

    def __init__(self, websocket: ClientConnection, url: str):
        self._ws = websocket
        self.url = redact_url(url)
        self._close_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._ws.state is State.CLOSED

    @property
    def close_sent(self) -> bool:
        return self._close_task is not None

    async def receive(self) -> Union[str, bytes]:
        """Block until the next message arrives."""
        try:
            return await self._ws.recv()
        except ConnectionClosedError as e:
            # Abnormal closure is a dropped connection unless we initiated the close
            if not (self.close_sent or self._closed):
                raise ReadError(f"connection lost: {e}") from e
            raise TransportClosedError(f"connection closed: {e}") from e
        except ConnectionClosed as e:
            close_frame = e.rcvd or e.sent
            raise TransportClosedError(
                f"connection closed: {e}",
                code=close_frame.code if close_frame else None,
                reason=close_frame.reason if close_frame else "",
            ) from e
        except (WebSocketException, OSError) as e:
            raise ReadError(f"read error: {e}") from e

    async def send_close(self, reason: str = "") -> None:
        """
        Send a close frame without waiting for the peer to acknowledge it.

        Raises:
            WriteError: the connection is already closing or closed
        """
        if self._close_task is not None:
            logger.debug("Close frame already sent")
            return

        if self._closed or self._ws.state in (State.CLOSING, State.CLOSED):
            raise WriteError(f"cannot send close frame, connection is {self._ws.state.name.lower()}")

        self._close_task = asyncio.create_task(self._ws.close(NORMAL_CLOSURE, reason))
        # Let the task write the frame before returning
        await asyncio.sleep(0)
        if self._close_task.done() and self._close_task.exception() is not None:
            raise WriteError(f"write close error: {self._close_task.exception()}")

    async def close(self) -> None:
        """Release the connection."""
        if self._closed:
            return
        self._closed = True

        try:
            if self._close_task is not None:
                await self._close_task
            else:
                await self._ws.close(NORMAL_CLOSURE)
        except (WebSocketException, OSError) as e:
            logger.warning(f"Error while closing connection: {e}")

        logger.info("Disconnected from streaming endpoint")

    async def __aenter__(self) -> "StreamConnection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


async def connect(url: str, config: StreamConfig) -> StreamConnection:
    """
    Open the streaming connection.

    Raises:
        HandshakeError: the server answered the upgrade with a non-101 status
        DialError: the endpoint could not be reached
    """
    logger.info(f"Connecting to {redact_url(url)}")

    try:
        websocket = await ws_connect(
            url,
            open_timeout=config.open_timeout_seconds,
            close_timeout=config.close_timeout_seconds,
            ping_interval=config.ping_interval_seconds,
            max_size=config.max_message_bytes,
        )
    except InvalidStatus as e:
        response = e.response
        body = response.body.decode("utf-8", errors="replace") if response.body else ""
        logger.error(f"Handshake failed with status {response.status_code}")
        logger.error(f"Response body: {body}")
        raise HandshakeError(response.status_code, body) from e
    except (WebSocketException, OSError, asyncio.TimeoutError) as e:
        logger.error(f"Dial error: {e}")
        raise DialError(e) from e

    logger.info("Connection established")
    return StreamConnection(websocket, url)
