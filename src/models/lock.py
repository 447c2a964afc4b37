"""
Soft edit lock models
"""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class Lock:
    """
    Advisory edit lock on a single card

    Attributes:
        card_id: Locked card
        holder_id: Participant holding the lock
        acquired_at: When the lock was acquired or last renewed (UTC)
        expires_at: acquired_at + TTL; past this the lock is treated as absent
    """

    card_id: str
    holder_id: str
    acquired_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def remaining_seconds(self, now: datetime) -> float:
        return max(0.0, (self.expires_at - now).total_seconds())

    def to_dict(self) -> dict:
        return {
            "card_id": self.card_id,
            "holder_id": self.holder_id,
            "acquired_at": self.acquired_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class LockResult:
    """Outcome of an acquire attempt; `lock` is the current holder's lock either way."""

    granted: bool
    lock: Lock | None = None


@dataclass(frozen=True)
class LockStatus:
    """Lock visibility surface exposed to the UI layer."""

    locked: bool
    locked_by_self: bool
    remaining_ttl_seconds: float
    holder_id: str | None = None

    @classmethod
    def unlocked(cls) -> "LockStatus":
        return cls(locked=False, locked_by_self=False, remaining_ttl_seconds=0.0)


def utc_now() -> datetime:
    """Default clock for lock bookkeeping."""
    return datetime.now(timezone.utc)
