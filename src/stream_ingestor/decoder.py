"""Decoding of raw streaming frames into envelopes."""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .errors import DecodeError


SUCCESS_CODE = 100

# Keys carrying the error detail of a non-event message
ERROR_DETAIL_KEYS = ("service_message", "error")


@dataclass
class Envelope:
    """Decoded form of one streaming message."""
    code: int
    event: Optional[Dict[str, Any]]
    error: Optional[Dict[str, Any]]
    raw: str


def _parse_code(value: Any, raw: str) -> int:
    # bool is an int subclass; a JSON true is not a status code
    if isinstance(value, bool):
        raise DecodeError(f"status code has invalid type {type(value).__name__}", raw)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise DecodeError(f"status code has invalid type {type(value).__name__}", raw)


def decode(raw_frame: Union[str, bytes]) -> Envelope:
    """
    Parse a raw frame into an ``Envelope``.

    Raises:
        DecodeError: the frame is not a JSON object, lacks a valid ``code``,
            or is a success frame without an ``event`` object
    """
    if isinstance(raw_frame, (bytes, bytearray)):
        try:
            raw = bytes(raw_frame).decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"frame is not valid UTF-8: {e}", raw_frame)
    else:
        raw = raw_frame

    try:
        body = json.loads(raw)
    except ValueError as e:
        raise DecodeError(f"frame is not valid JSON: {e}", raw)

    if not isinstance(body, dict):
        raise DecodeError(f"frame is a JSON {type(body).__name__}, expected an object", raw)

    if "code" not in body:
        raise DecodeError("frame has no status code", raw)

    code = _parse_code(body["code"], raw)

    if code == SUCCESS_CODE:
        event = body.get("event")
        if not isinstance(event, dict):
            raise DecodeError("success frame has no event object", raw)
        return Envelope(code=code, event=event, error=None, raw=raw)

    error = None
    for key in ERROR_DETAIL_KEYS:
        if isinstance(body.get(key), dict):
            error = body[key]
            break

    event = body.get("event") if isinstance(body.get("event"), dict) else None
    return Envelope(code=code, event=event, error=error, raw=raw)


def is_admissible(envelope: Envelope) -> bool:
    """Whether the envelope is a success event eligible for forwarding."""
    return envelope.code == SUCCESS_CODE
