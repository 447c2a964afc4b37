"""
Durable store contract

The engine persists cards through a DurableStore and never depends on a
specific persistence technology. Every implementation reports failures as
StoreError with one of four kinds; only TRANSIENT failures are retryable.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from models import Card


class StoreErrorKind(Enum):
    """Failure taxonomy for durable-store calls."""

    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    TRANSIENT = "transient"  # network failure, timeout, 5xx


class StoreError(Exception):
    """Raised by DurableStore implementations."""

    def __init__(self, kind: StoreErrorKind, message: str = "", status: int | None = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind == StoreErrorKind.TRANSIENT

    @property
    def rejected(self) -> bool:
        """The server understood the request and refused it."""
        return not self.retryable

    def __repr__(self) -> str:
        return f"StoreError({self.kind.value}, {str(self)!r})"


class DurableStore(ABC):
    """
    Async persistence boundary for cards.

    Implementations return the server's canonical value (generated id,
    version, timestamps) and raise StoreError on failure.
    """

    @abstractmethod
    async def create_card(self, payload: dict[str, Any]) -> Card:
        """Insert a card from a flat row payload."""
        ...

    @abstractmethod
    async def update_card(self, card_id: str, partial: dict[str, Any]) -> Card:
        """Apply a partial update; returns the updated card."""
        ...

    @abstractmethod
    async def delete_card(self, card_id: str) -> None:
        ...

    @abstractmethod
    async def get_cards_by_project(self, project_id: str) -> list[Card]:
        """Full current state of a project (used for load and resync)."""
        ...

    async def close(self) -> None:  # noqa: B027
        """Release network resources (optional)."""
