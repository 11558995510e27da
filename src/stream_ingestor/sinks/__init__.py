"""Event sinks."""

from .base import EventSink
from .postgres import PostgresEventSink

__all__ = ["EventSink", "PostgresEventSink"]
