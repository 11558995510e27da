"""Error taxonomy for the stream ingestor.

Errors fall into four groups:

- fatal at startup: ``ConfigError``, ``StartupError``, ``ConnectError``
- fatal at runtime: ``StoreError`` raised by the sink
- recoverable per message: ``DecodeError``
- transport closed: ``ReadError`` / ``TransportClosedError``, which end the
  ingestion loop without being an application failure
"""

from typing import Any, List, Optional


class IngestorError(Exception):
    """Base class for all ingestor errors."""


class ConfigError(IngestorError):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class StartupError(IngestorError):
    """A collaborator could not be initialized before ingestion started."""


class ConnectError(IngestorError):
    """The streaming connection could not be established."""


class HandshakeError(ConnectError):
    """The server rejected the websocket upgrade."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"handshake failed with status {status_code}")
        self.status_code = status_code
        self.body = body


class DialError(ConnectError):
    """Network-level failure while dialing the endpoint."""

    def __init__(self, cause: BaseException):
        super().__init__(f"dial error: {cause}")
        self.cause = cause


class ReadError(IngestorError):
    """Receiving from the transport failed."""


class TransportClosedError(ReadError):
    """The transport was closed by the peer or locally."""

    def __init__(self, message: str = "connection closed", code: Optional[int] = None,
                 reason: str = ""):
        super().__init__(message)
        self.code = code
        self.reason = reason


class WriteError(IngestorError):
    """Sending a control frame failed."""


class DecodeError(IngestorError):
    """A raw frame could not be decoded into an envelope."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class StoreError(IngestorError):
    """The sink failed to persist an event."""
