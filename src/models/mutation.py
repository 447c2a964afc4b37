"""
Optimistic mutation bookkeeping
"""

import time
from dataclasses import dataclass, field
from typing import Any

from .card import Card
from .enums import MutationKind, MutationStatus


@dataclass
class PendingMutation:
    """
    An issued but unacknowledged local mutation.

    Attributes:
        entity_id: Card the mutation targets
        previous_snapshot: Card value before the optimistic apply (None for create)
        kind: create/update/delete/move
        seq: Monotonic issuance counter, orders overlapping mutations
        issued_at: Wall-clock issue time (epoch seconds), compared with feed
            commit timestamps
        optimistic: Locally applied value (None for delete)
    """

    entity_id: str
    previous_snapshot: Card | None
    kind: MutationKind
    seq: int
    issued_at: float = field(default_factory=time.time)
    optimistic: Card | None = None
    attempts: int = 0


@dataclass(frozen=True)
class MutationDescriptor:
    """What a caller asks the optimistic controller to do."""

    kind: MutationKind
    entity_id: str
    project_id: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class MutationResult:
    """
    Reported outcome of an optimistic mutation

    `card` is the value now in the local store for the entity (None after a
    confirmed delete or a rolled-back create).
    """

    status: MutationStatus
    entity_id: str
    card: Card | None = None
    error: Exception | None = None
    retryable: bool = False
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.status in (MutationStatus.CONFIRMED, MutationStatus.SUPERSEDED)

    @property
    def rolled_back(self) -> bool:
        return self.status == MutationStatus.ROLLED_BACK

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "entity_id": self.entity_id,
            "card": self.card.to_row() if self.card else None,
            "error": str(self.error) if self.error else None,
            "retryable": self.retryable,
            "attempts": self.attempts,
        }
