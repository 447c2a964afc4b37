"""
ChangeFeedMerger - applies change-feed events to the local CardStore

The feed subscription is table-wide; this subscriber filters to the active
project and decides, per event, whether the server value may replace what
the store shows:

- Events for another project, or for a superseded scope, are dropped.
- While a local mutation for the card is in flight, events committed before
  it was issued are stale and dropped, so the local intent stays visible.
  Later events are applied and also become the mutation's rollback target.
- Events carrying an older version than the stored card are dropped.
- Otherwise insert/update upsert and delete removes. Upserting an identical
  value is a no-op, so echoes of our own writes change nothing.

Lock columns (editing_by / editing_at) are mirrored into the LockManager.
After the feed reconnects, the active project is reloaded from the durable
store because events sent while disconnected are lost.

Usage:
    merger = ChangeFeedMerger(feed, store, controller, locks, durable, "alice")
    merger.activate("project-1")
"""

import asyncio
import logging
from typing import Any

from config import config
from core.card_store import CardStore
from core.lock_manager import LockManager
from core.optimistic import TEMP_ID_PREFIX, OptimisticUpdateController
from feed.subscriber import BaseSubscriber, FeedSource
from models import Card, CardChangeEvent
from sources.durable_store import DurableStore, StoreError

from services.event_bus import EventBus, Events
from services.logger import PerformanceLogger
from services.state_verifier import StateVerifier

logger = logging.getLogger(__name__)


class ChangeFeedMerger(BaseSubscriber):
    """
    Merges remote card changes into the local store.

    Args:
        feed: ChangeFeedClient or LocalChangeFeed
        store: Local CardStore
        controller: Optimistic controller (pending state, rollback targets)
        locks: LockManager receiving mirrored lock columns
        durable: DurableStore used for reconnect resyncs
        participant_id: Local participant (own locks are never cleared remotely)
        event_bus: Optional bus for feed notifications
        resync_on_reconnect: Reload the project after a reconnect
    """

    def __init__(
        self,
        feed: FeedSource,
        store: CardStore,
        controller: OptimisticUpdateController,
        locks: LockManager,
        durable: DurableStore,
        participant_id: str,
        event_bus: EventBus | None = None,
        resync_on_reconnect: bool | None = None,
    ):
        self.store = store
        self.controller = controller
        self.locks = locks
        self.durable = durable
        self.participant_id = participant_id
        self.event_bus = event_bus
        if resync_on_reconnect is None:
            resync_on_reconnect = config.SYNC["resync_on_reconnect"]
        self.resync_on_reconnect = resync_on_reconnect
        self.verifier = StateVerifier()

        self.project_id: str | None = None
        self._generation: int | None = None
        self._was_disconnected = False
        self._resync_task: asyncio.Task | None = None

        self._stats = {
            "applied": 0,
            "ignored_foreign": 0,
            "ignored_stale": 0,
            "applied_over_pending": 0,
            "invalid": 0,
            "resyncs": 0,
        }

        super().__init__(feed)

    # ========== Scope ==========

    def activate(self, project_id: str) -> None:
        """Bind to a project; events are accepted only for this scope."""
        self.project_id = project_id
        self._generation = self.controller.generation
        self._was_disconnected = False
        logger.debug(f"Merger active for project {project_id} (generation {self._generation})")

    def deactivate(self) -> None:
        """Stop merging: unsubscribe from the feed and cancel a running resync."""
        self.unsubscribe()
        self.project_id = None
        self._generation = None
        if self._resync_task is not None and not self._resync_task.done():
            self._resync_task.cancel()
        self._resync_task = None

    def _in_scope(self) -> bool:
        return (
            self.project_id is not None
            and self._generation == self.controller.generation
            and self.controller.project_id == self.project_id
        )

    def get_stats(self) -> dict[str, Any]:
        stats = dict(self._stats)
        stats["project_id"] = self.project_id
        return stats

    # ========== Feed events ==========

    def on_card_change(self, event: CardChangeEvent) -> None:
        if not self._in_scope():
            return

        project_id = self._event_project(event)
        if project_id != self.project_id:
            self._stats["ignored_foreign"] += 1
            return

        card_id = event.entity_id
        pending = self.controller.pending_for(card_id)
        if pending is not None:
            commit_epoch = event.commit_epoch
            if commit_epoch is not None and pending.issued_at > commit_epoch:
                # Local intent wins until its own round trip resolves
                self._stats["ignored_stale"] += 1
                logger.debug(f"Event for {card_id} predates pending #{pending.seq}")
                return
            # Committed after the local write was issued: canonical from now on
            self._stats["applied_over_pending"] += 1
            if event.is_delete:
                self.controller.observe_remote_delete(card_id)
            else:
                self.controller.observe_remote(event.record)

        if event.is_delete:
            self.locks.clear_remote(card_id, self.participant_id)
            if self.store.remove(card_id) is not None:
                self._stats["applied"] += 1
            return

        current = self.store.get(card_id)
        if current is not None and self._is_older(event.record, current):
            self._stats["ignored_stale"] += 1
            logger.debug(
                f"Ignoring v{event.record.version} of {card_id} (have v{current.version})"
            )
            return

        self._mirror_lock(event)
        self.store.upsert(event.record)
        self._stats["applied"] += 1

    def on_connection_change(self, connected: bool) -> None:
        if not connected:
            self._was_disconnected = True
            self._publish(Events.FEED_DISCONNECTED, {"project_id": self.project_id})
            logger.info("Change feed disconnected; local edits continue")
            return

        reconnect = self._was_disconnected
        self._was_disconnected = False
        self._publish(Events.FEED_CONNECTED, {"project_id": self.project_id, "reconnect": reconnect})
        if reconnect and self.resync_on_reconnect and self._in_scope():
            self._schedule_resync()

    def on_invalid_event(self, raw_event: dict, error: Exception) -> None:
        self._stats["invalid"] += 1
        logger.warning(f"Dropping malformed card.change (seq={raw_event.get('seq')}): {error}")
        self._publish(Events.FEED_EVENT_DROPPED, {"seq": raw_event.get("seq"), "error": str(error)})

    # ========== Helpers ==========

    def _event_project(self, event: CardChangeEvent) -> str | None:
        if event.project_id:
            return event.project_id
        # Deletes may carry only the primary key
        current = self.store.get(event.entity_id)
        return current.project_id if current else None

    @staticmethod
    def _is_older(incoming: Card, current: Card) -> bool:
        if incoming.version or current.version:
            return incoming.version < current.version
        if incoming.updated_at and current.updated_at:
            return incoming.updated_at < current.updated_at
        return False

    def _mirror_lock(self, event: CardChangeEvent) -> None:
        card_id = event.entity_id
        if event.lock_holder:
            self.locks.observe_remote(card_id, event.lock_holder, event.lock_acquired_at)
        else:
            self.locks.clear_remote(card_id, self.participant_id)

    def _publish(self, event: Events, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event, data)

    # ========== Resync ==========

    def _schedule_resync(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Reconnect outside an event loop; resync skipped")
            return
        if self._resync_task is not None and not self._resync_task.done():
            self._resync_task.cancel()
        self._resync_task = loop.create_task(self.resync())

    @property
    def resync_task(self) -> asyncio.Task | None:
        return self._resync_task

    async def resync(self) -> dict[str, Any] | None:
        """
        Reload the active project from the durable store.

        Cards with in-flight local mutations keep their local value; the
        fetched value becomes their rollback target instead.

        Returns:
            The drift report, or None if the scope changed or the load failed
        """
        project_id = self.project_id
        generation = self._generation
        if project_id is None:
            return None

        try:
            with PerformanceLogger(logger, "resync", {"project_id": project_id}):
                remote_cards = await self.durable.get_cards_by_project(project_id)
        except StoreError as e:
            logger.error(f"Resync of {project_id} failed: {e}")
            return None

        if project_id != self.project_id or generation != self.controller.generation:
            logger.debug(f"Discarding resync of {project_id}: scope changed")
            return None

        pending_ids = self.controller.pending_ids()
        report = self.verifier.verify(self.store.list(project_id), remote_cards, pending_ids)

        merged: dict[str, Card] = {}
        for card in remote_cards:
            if card.id in pending_ids:
                self.controller.observe_remote(card)
            else:
                merged[card.id] = card
        for card_id in pending_ids:
            local = self.store.get(card_id)
            if local is not None:
                merged[card_id] = local
        remote_ids = {c.id for c in remote_cards}
        for card_id in pending_ids - remote_ids:
            # Deleted remotely while we were away
            if self.store.get(card_id) is not None and not card_id.startswith(TEMP_ID_PREFIX):
                self.controller.observe_remote_delete(card_id)

        self.store.replace_project(project_id, list(merged.values()))
        self._stats["resyncs"] += 1
        logger.info(
            f"Resynced project {project_id}: {len(merged)} cards "
            f"({len(pending_ids)} pending kept, verified={report['verified']})"
        )
        self._publish(Events.PROJECT_RESYNCED, {"project_id": project_id, "report": report})
        return report
