"""
State Verifier - local CardStore vs durable store

Compares the local working set of a project with the rows fetched from the
durable store during a resync. Drift is logged, never corrected here; the
merger replaces the store scope afterwards.
"""

import logging
from typing import Any

from models import Card

logger = logging.getLogger(__name__)

POSITION_TOLERANCE = 1e-6


class StateVerifier:
    """Compares local cards to server truth."""

    def __init__(self, tolerance: float = POSITION_TOLERANCE):
        self.tolerance = tolerance
        self.drift_count = 0
        self.total_verifications = 0
        self.last_verification: dict[str, Any] | None = None

    def _position_drift(self, local: Card, remote: Card) -> float:
        return max(
            abs(local.position.x - remote.position.x),
            abs(local.position.y - remote.position.y),
        )

    def verify(
        self,
        local_cards: list[Card],
        remote_cards: list[Card],
        pending_ids: set[str] | None = None,
    ) -> dict[str, Any]:
        """
        Compare local state to server state.

        Args:
            local_cards: Cards currently in the CardStore for the project
            remote_cards: Cards returned by the durable store
            pending_ids: Cards with in-flight local mutations (expected to differ)

        Returns:
            Dict with verification result and details
        """
        self.total_verifications += 1
        pending_ids = pending_ids or set()

        local = {c.id: c for c in local_cards}
        remote = {c.id: c for c in remote_cards}

        missing_locally = sorted(set(remote) - set(local) - pending_ids)
        missing_remotely = sorted(set(local) - set(remote) - pending_ids)

        moved = []
        changed = []
        for card_id in sorted(set(local) & set(remote)):
            if card_id in pending_ids:
                continue
            mine, theirs = local[card_id], remote[card_id]
            drift = self._position_drift(mine, theirs)
            if drift > self.tolerance:
                moved.append({"id": card_id, "local": mine.position, "server": theirs.position})
            elif mine.version != theirs.version or mine.content != theirs.content:
                changed.append(
                    {"id": card_id, "local_version": mine.version, "server_version": theirs.version}
                )

        all_ok = not (missing_locally or missing_remotely or moved or changed)

        if not all_ok:
            self.drift_count += 1
            logger.warning(
                f"Card drift detected! "
                f"missing locally: {len(missing_locally)}, "
                f"missing remotely: {len(missing_remotely)}, "
                f"moved: {len(moved)}, changed: {len(changed)}"
            )

        result = {
            "verified": all_ok,
            "missing_locally": missing_locally,
            "missing_remotely": missing_remotely,
            "moved": moved,
            "changed": changed,
            "skipped_pending": sorted(pending_ids & (set(local) | set(remote))),
            "drift_count": self.drift_count,
            "total_verifications": self.total_verifications,
        }

        self.last_verification = result
        return result
