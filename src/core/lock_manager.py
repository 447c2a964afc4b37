"""
LockManager - advisory per-card edit locks with expiry

A lock is acquired on edit start, renewed only by an explicit acquire from
the same holder, and released on edit end. A lock past its expiry is treated
as absent by every reader, so a holder that disappears without releasing
blocks others for at most one TTL.

Locks published by other clients (mirrored from the change feed) are stored
in the same table via observe_remote().
"""

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from config import config
from models import Lock, LockResult, LockStatus, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class LockManager:
    """
    Soft lock table keyed by card id

    Args:
        ttl_seconds: Lock lifetime (defaults to Config.LOCKS['ttl_seconds'])
        clock: Returns the current aware UTC datetime; injectable for tests
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Clock | None = None):
        if ttl_seconds is None:
            ttl_seconds = config.LOCKS["ttl_seconds"]
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or utc_now
        self._locks: dict[str, Lock] = {}
        self._lock = threading.RLock()

    def _live(self, card_id: str, now: datetime) -> Lock | None:
        """Current unexpired lock (caller holds self._lock)."""
        lock = self._locks.get(card_id)
        if lock is None:
            return None
        if lock.is_expired(now):
            return None
        return lock

    def acquire(self, card_id: str, holder_id: str) -> LockResult:
        """
        Acquire or renew the lock on a card.

        Granted when the card is unlocked, the existing lock expired, or the
        caller already holds it (renewal resets the TTL). Otherwise returns
        granted=False with the blocking lock.
        """
        now = self._clock()
        with self._lock:
            current = self._live(card_id, now)
            if current is not None and current.holder_id != holder_id:
                logger.debug(f"Lock on {card_id} denied to {holder_id}: held by {current.holder_id}")
                return LockResult(granted=False, lock=current)

            lock = Lock(card_id=card_id, holder_id=holder_id, acquired_at=now, expires_at=now + self.ttl)
            self._locks[card_id] = lock

        logger.debug(f"Lock on {card_id} granted to {holder_id} until {lock.expires_at.isoformat()}")
        return LockResult(granted=True, lock=lock)

    def release(self, card_id: str, holder_id: str) -> bool:
        """Release a lock; no-op (False) unless the caller is the holder."""
        with self._lock:
            lock = self._locks.get(card_id)
            if lock is None or lock.holder_id != holder_id:
                return False
            del self._locks[card_id]

        logger.debug(f"Lock on {card_id} released by {holder_id}")
        return True

    def is_locked_by_other(self, card_id: str, self_id: str) -> bool:
        """True only when another participant holds an unexpired lock."""
        now = self._clock()
        with self._lock:
            lock = self._live(card_id, now)
        return lock is not None and lock.holder_id != self_id

    def status(self, card_id: str, self_id: str) -> LockStatus:
        now = self._clock()
        with self._lock:
            lock = self._live(card_id, now)
        if lock is None:
            return LockStatus.unlocked()
        return LockStatus(
            locked=True,
            locked_by_self=lock.holder_id == self_id,
            remaining_ttl_seconds=lock.remaining_seconds(now),
            holder_id=lock.holder_id,
        )

    def get(self, card_id: str) -> Lock | None:
        now = self._clock()
        with self._lock:
            return self._live(card_id, now)

    # ========== Remote locks ==========

    def observe_remote(self, card_id: str, holder_id: str, acquired_at: datetime | None = None):
        """
        Mirror a lock published by another client.

        The expiry is derived from the publisher's acquire time, so a stale
        lock column never blocks anyone beyond its TTL.
        """
        acquired_at = acquired_at or self._clock()
        lock = Lock(
            card_id=card_id,
            holder_id=holder_id,
            acquired_at=acquired_at,
            expires_at=acquired_at + self.ttl,
        )
        with self._lock:
            current = self._locks.get(card_id)
            if current is not None and current.acquired_at > acquired_at:
                return
            self._locks[card_id] = lock

    def clear_remote(self, card_id: str, self_id: str | None = None):
        """Forget a mirrored lock (own locks are kept)."""
        with self._lock:
            lock = self._locks.get(card_id)
            if lock is not None and lock.holder_id != self_id:
                del self._locks[card_id]

    # ========== Housekeeping ==========

    def locks_held_by(self, holder_id: str) -> list[Lock]:
        now = self._clock()
        with self._lock:
            return [
                lock
                for lock in self._locks.values()
                if lock.holder_id == holder_id and not lock.is_expired(now)
            ]

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [cid for cid, lock in self._locks.items() if lock.is_expired(now)]
            for cid in expired:
                del self._locks[cid]
        if expired:
            logger.debug(f"Purged {len(expired)} expired locks")
        return len(expired)

    def clear(self):
        with self._lock:
            self._locks.clear()
