"""Sink interface consumed by the ingestion loop."""

from abc import ABC, abstractmethod
from typing import Any, Dict


class EventSink(ABC):
    """
    Persistence capability that accepts one decoded event at a time.

    ``store`` returns an acknowledgement (for example the inserted row id) or
    raises ``StoreError``.
    """

    async def initialize(self) -> None:
        """Acquire resources before the first ``store`` call."""

    @abstractmethod
    async def store(self, event: Dict[str, Any]) -> Any:
        """Persist ``event``."""

    async def close(self) -> None:
        """Release resources."""
