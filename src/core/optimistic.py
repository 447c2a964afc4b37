"""
OptimisticUpdateController - local-first mutations with server reconciliation

Every mutation is applied to the CardStore synchronously, then persisted.
Success reconciles the server's canonical value (generated id, version,
timestamps); failure restores the last confirmed value.

Overlapping mutations on one card are tracked in a per-card ledger:
- confirmed: last value the server acknowledged (or the value before the
  first of the overlapping mutations)
- pending: in-flight mutations keyed by issue sequence number

Outcome rules (last issued wins):
- A success updates the confirmed value. It is applied to the store only if
  no newer mutation for the card is pending or already confirmed.
- A value the change feed delivered while a mutation was in flight (see
  observe_remote) is kept if it is newer than the acknowledged one.
- A failure rolls the card back to the confirmed value only if no newer
  mutation for the card is pending or already confirmed; otherwise the newer
  mutation decides and the failure is reported as superseded.

Persist calls are bounded by a timeout. A timed-out call is rolled back like
a transient failure; if it succeeds later, the value is handed to the
on_late_success hook instead of being applied here.
"""

import asyncio
import itertools
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from config import config
from models import (
    Card,
    LogicalPosition,
    MutationDescriptor,
    MutationKind,
    MutationResult,
    MutationStatus,
    PendingMutation,
)
from services.logger import log_performance
from sources.durable_store import DurableStore, StoreError, StoreErrorKind

from .card_store import CardStore
from .validators import ValidationError, require_valid, validate_mutation

logger = logging.getLogger(__name__)

ApplyLocally = Callable[[], Card | None]
PersistRemotely = Callable[[], Awaitable[Card | None]]
LateSuccessHook = Callable[[MutationDescriptor, Card | None], None]
OutcomeHook = Callable[[MutationDescriptor, MutationResult], None]

TEMP_ID_PREFIX = "temp-"

# Card field name -> wire column
_WIRE_NAMES = {"collapsed": "is_collapsed", "owner_id": "created_by"}


class PersistTimeout(StoreError):
    """Persist call exceeded the timeout (transient; never auto-retried)."""


@dataclass
class _Ledger:
    confirmed: Card | None
    confirmed_seq: int = 0
    remote_deleted: bool = False
    pending: dict[int, PendingMutation] = field(default_factory=dict)

    def newer_than(self, seq: int) -> bool:
        """A newer mutation is pending or already confirmed."""
        return self.confirmed_seq > seq or any(s > seq for s in self.pending)


class OptimisticUpdateController:
    """
    Single place where persistence failures become rollback + reported outcome

    Args:
        store: Local CardStore
        durable: DurableStore used by the convenience operations
        persist_timeout: Seconds before a persist call counts as failed
        retry_attempts: Extra attempts for transient failures of idempotent kinds
        retry_backoff: Base delay between retries (doubles each attempt)
        on_late_success: Receives values that arrived after their timeout
        on_outcome: Receives every reported MutationResult
    """

    def __init__(
        self,
        store: CardStore,
        durable: DurableStore,
        persist_timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_backoff: float | None = None,
        on_late_success: LateSuccessHook | None = None,
        on_outcome: OutcomeHook | None = None,
    ):
        sync = config.SYNC
        self.store = store
        self.durable = durable
        self.persist_timeout = sync["persist_timeout"] if persist_timeout is None else persist_timeout
        self.retry_attempts = sync["retry_attempts"] if retry_attempts is None else retry_attempts
        self.retry_backoff = sync["retry_backoff"] if retry_backoff is None else retry_backoff
        self.on_late_success = on_late_success
        self.on_outcome = on_outcome

        self.project_id: str | None = None
        self._generation = 0
        self._seq = itertools.count(1)
        self._ledgers: dict[str, _Ledger] = {}
        self._late_tasks: set[asyncio.Task] = set()

    # ========== Scope ==========

    def reset(self, project_id: str | None = None) -> None:
        """
        Abandon all bookkeeping (project switch / teardown).

        In-flight mutations finish without touching the store and report
        ABANDONED; late results of the old scope are ignored.
        """
        self._generation += 1
        self._ledgers.clear()
        for task in list(self._late_tasks):
            task.cancel()
        self._late_tasks.clear()
        self.project_id = project_id

    @property
    def generation(self) -> int:
        return self._generation

    # ========== Pending state (read by the change-feed merger) ==========

    def pending_for(self, entity_id: str) -> PendingMutation | None:
        """Most recently issued in-flight mutation for an entity."""
        ledger = self._ledgers.get(entity_id)
        if not ledger or not ledger.pending:
            return None
        return ledger.pending[max(ledger.pending)]

    def has_pending(self, entity_id: str) -> bool:
        return self.pending_for(entity_id) is not None

    def pending_ids(self) -> set[str]:
        return {eid for eid, ledger in self._ledgers.items() if ledger.pending}

    def confirmed_value(self, entity_id: str) -> Card | None:
        ledger = self._ledgers.get(entity_id)
        return ledger.confirmed if ledger else self.store.get(entity_id)

    def observe_remote(self, card: Card) -> bool:
        """
        Record a newer server value for a card with in-flight mutations.

        The store is not touched here. The value becomes the rollback target
        and wins over an older acknowledgement of the pending mutation.
        Returns True if it was recorded.
        """
        ledger = self._ledgers.get(card.id)
        if not ledger or not ledger.pending:
            return False
        if ledger.confirmed is not None and card.version < ledger.confirmed.version:
            return False
        ledger.confirmed = card
        ledger.remote_deleted = False
        return True

    def observe_remote_delete(self, card_id: str) -> bool:
        ledger = self._ledgers.get(card_id)
        if not ledger or not ledger.pending:
            return False
        ledger.confirmed = None
        ledger.remote_deleted = True
        return True

    # ========== Core protocol ==========

    async def perform(
        self,
        descriptor: MutationDescriptor,
        apply_locally: ApplyLocally,
        persist_remotely: PersistRemotely,
    ) -> MutationResult:
        """
        Apply locally, persist, then reconcile or roll back.

        Args:
            descriptor: What is being mutated
            apply_locally: Synchronous optimistic write to the store; returns
                the optimistic value (None for delete)
            persist_remotely: Coroutine factory performing the durable write;
                returns the server value (None for delete)
        """
        entity_id = descriptor.entity_id
        generation = self._generation

        ledger = self._ledgers.get(entity_id)
        if ledger is None:
            ledger = _Ledger(confirmed=self.store.get(entity_id))
            self._ledgers[entity_id] = ledger

        pending = PendingMutation(
            entity_id=entity_id,
            previous_snapshot=self.store.get(entity_id),
            kind=descriptor.kind,
            seq=next(self._seq),
            issued_at=time.time(),
        )
        ledger.pending[pending.seq] = pending
        try:
            pending.optimistic = apply_locally()
        except Exception:
            self._forget(entity_id, pending.seq)
            raise

        logger.debug(f"Issued {descriptor.kind.value} #{pending.seq} for {entity_id}")

        server_value: Card | None = None
        error: Exception | None = None
        started = time.perf_counter()
        while True:
            pending.attempts += 1
            try:
                server_value = await self._persist(descriptor, persist_remotely, generation)
                error = None
                break
            except StoreError as e:
                error = e
                if not self._should_retry(descriptor, e, pending, generation):
                    break
                delay = self.retry_backoff * (2 ** (pending.attempts - 1))
                logger.info(
                    f"Retrying {descriptor.kind.value} #{pending.seq} for {entity_id} "
                    f"in {delay:.2f}s ({e})"
                )
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Unexpected persist error for {entity_id}: {e}", exc_info=True)
                error = e
                break

        log_performance(
            f"persist.{descriptor.kind.value}",
            time.perf_counter() - started,
            {"entity_id": entity_id, "attempts": pending.attempts, "ok": error is None},
        )

        if generation != self._generation:
            logger.debug(f"Dropping result of #{pending.seq} for {entity_id}: project switched")
            result = MutationResult(
                status=MutationStatus.ABANDONED,
                entity_id=entity_id,
                error=error,
                attempts=pending.attempts,
            )
        elif error is None:
            result = self._on_success(ledger, pending, server_value)
        else:
            result = self._on_failure(ledger, pending, error)

        if self.on_outcome:
            self.on_outcome(descriptor, result)
        return result

    async def _persist(
        self, descriptor: MutationDescriptor, persist_remotely: PersistRemotely, generation: int
    ) -> Card | None:
        task = asyncio.ensure_future(persist_remotely())
        try:
            return await asyncio.wait_for(asyncio.shield(task), self.persist_timeout)
        except asyncio.TimeoutError:
            self._watch_late(task, descriptor, generation)
            raise PersistTimeout(
                StoreErrorKind.TRANSIENT, f"persist timed out after {self.persist_timeout}s"
            ) from None
        except asyncio.CancelledError:
            task.cancel()
            raise

    def _watch_late(
        self, task: asyncio.Future, descriptor: MutationDescriptor, generation: int
    ) -> None:
        """Route a timed-out persist call's eventual result to the late hook."""

        def done(fut: asyncio.Future):
            self._late_tasks.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.debug(f"Late {descriptor.kind.value} for {descriptor.entity_id} failed: {exc}")
                return
            if generation != self._generation:
                return
            logger.info(f"Late success for {descriptor.kind.value} {descriptor.entity_id}")
            if self.on_late_success:
                self.on_late_success(descriptor, fut.result())

        self._late_tasks.add(task)
        task.add_done_callback(done)

    def _should_retry(
        self, descriptor: MutationDescriptor, error: StoreError, pending: PendingMutation, generation: int
    ) -> bool:
        # A timed-out call may still land; its late result is merged instead
        if isinstance(error, PersistTimeout):
            return False
        if not error.retryable or not descriptor.kind.idempotent:
            return False
        if pending.attempts > self.retry_attempts:
            return False
        if generation != self._generation:
            return False
        # A newer mutation already carries the latest intent
        ledger = self._ledgers.get(descriptor.entity_id)
        return ledger is not None and not ledger.newer_than(pending.seq)

    def _on_success(
        self, ledger: _Ledger, pending: PendingMutation, server_value: Card | None
    ) -> MutationResult:
        entity_id = pending.entity_id
        newer = ledger.newer_than(pending.seq)
        ledger.pending.pop(pending.seq, None)
        server_value = self._latest(ledger, server_value)
        if pending.seq > ledger.confirmed_seq:
            ledger.confirmed = server_value
            ledger.confirmed_seq = pending.seq

        if newer:
            self._drop_if_settled(entity_id)
            logger.debug(f"#{pending.seq} for {entity_id} confirmed but superseded")
            return MutationResult(
                status=MutationStatus.SUPERSEDED,
                entity_id=entity_id,
                card=self.store.get(entity_id),
                attempts=pending.attempts,
            )

        card = self._reconcile(entity_id, server_value)
        self._drop_if_settled(entity_id)
        return MutationResult(
            status=MutationStatus.CONFIRMED,
            entity_id=entity_id,
            card=card,
            attempts=pending.attempts,
        )

    def _on_failure(
        self, ledger: _Ledger, pending: PendingMutation, error: Exception
    ) -> MutationResult:
        entity_id = pending.entity_id
        retryable = isinstance(error, StoreError) and error.retryable
        newer = ledger.newer_than(pending.seq)
        ledger.pending.pop(pending.seq, None)

        if newer:
            self._drop_if_settled(entity_id)
            logger.info(f"#{pending.seq} for {entity_id} failed but a newer mutation decides: {error}")
            return MutationResult(
                status=MutationStatus.SUPERSEDED,
                entity_id=entity_id,
                card=self.store.get(entity_id),
                error=error,
                retryable=retryable,
                attempts=pending.attempts,
            )

        restored = self._restore(entity_id, ledger.confirmed)
        self._drop_if_settled(entity_id)
        logger.warning(f"Rolled back {pending.kind.value} of {entity_id}: {error}")
        return MutationResult(
            status=MutationStatus.ROLLED_BACK,
            entity_id=entity_id,
            card=restored,
            error=error,
            retryable=retryable,
            attempts=pending.attempts,
        )

    @staticmethod
    def _latest(ledger: _Ledger, server_value: Card | None) -> Card | None:
        """The acknowledged value, unless the feed already delivered a newer one."""
        if ledger.remote_deleted:
            return None
        confirmed = ledger.confirmed
        if server_value is None or confirmed is None or confirmed.id != server_value.id:
            return server_value
        if confirmed.version > server_value.version:
            return confirmed
        return server_value

    def _reconcile(self, entity_id: str, server_value: Card | None) -> Card | None:
        if server_value is None:
            self.store.remove(entity_id)
            return None
        if server_value.id != entity_id:
            # Create: swap the temporary id for the generated one
            self.store.remove(entity_id)
        return self.store.upsert(server_value)

    def _restore(self, entity_id: str, confirmed: Card | None) -> Card | None:
        if confirmed is None:
            self.store.remove(entity_id)
            return None
        if confirmed.id != entity_id:
            self.store.remove(entity_id)
        return self.store.upsert(confirmed)

    def _forget(self, entity_id: str, seq: int) -> None:
        ledger = self._ledgers.get(entity_id)
        if ledger:
            ledger.pending.pop(seq, None)
            self._drop_if_settled(entity_id)

    def _drop_if_settled(self, entity_id: str) -> None:
        ledger = self._ledgers.get(entity_id)
        if ledger is not None and not ledger.pending:
            del self._ledgers[entity_id]

    # ========== Convenience operations ==========

    def _check(self, kind: MutationKind, project_id: str | None, payload: dict, existing: Card | None):
        require_valid(validate_mutation(kind, project_id, self.project_id, payload, existing))

    async def create_card(self, project_id: str, payload: dict[str, Any]) -> MutationResult:
        """
        Create a card optimistically under a temporary id.

        Args:
            project_id: Active project
            payload: Row fields; x/y are required logical coordinates
        """
        payload = dict(payload)
        self._check(MutationKind.CREATE, project_id, payload, None)
        if "x" not in payload or "y" not in payload:
            raise ValidationError("create requires x and y")

        temp_id = f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"
        optimistic = self.store.clamped(
            Card.from_row({**payload, "id": temp_id, "project_id": project_id, "version": 0})
        )
        wire = {k: v for k, v in optimistic.to_row().items() if k not in ("id", "created_at", "updated_at", "version")}

        descriptor = MutationDescriptor(MutationKind.CREATE, temp_id, project_id, wire)
        return await self.perform(
            descriptor,
            lambda: self.store.upsert(optimistic),
            lambda: self.durable.create_card(wire),
        )

    async def update_card(
        self, card_id: str, changes: dict[str, Any], kind: MutationKind = MutationKind.UPDATE
    ) -> MutationResult:
        """Apply a partial update (field or wire names) optimistically."""
        existing = self.store.get(card_id)
        project_id = existing.project_id if existing else self.project_id
        self._check(kind, project_id, self._coordinate_view(changes), existing)

        optimistic = self.store.clamped(existing.with_changes(changes))
        wire = self._wire_partial(changes, optimistic)

        descriptor = MutationDescriptor(kind, card_id, project_id, wire)
        return await self.perform(
            descriptor,
            lambda: self.store.upsert(optimistic),
            lambda: self.durable.update_card(card_id, wire),
        )

    async def move_card(self, card_id: str, position: LogicalPosition) -> MutationResult:
        return await self.update_card(
            card_id, {"x": position.x, "y": position.y}, kind=MutationKind.MOVE
        )

    async def delete_card(self, card_id: str) -> MutationResult:
        existing = self.store.get(card_id)
        project_id = existing.project_id if existing else self.project_id
        self._check(MutationKind.DELETE, project_id, {}, existing)

        async def persist() -> None:
            await self.durable.delete_card(card_id)
            return None

        def apply() -> None:
            self.store.remove(card_id)
            return None

        descriptor = MutationDescriptor(MutationKind.DELETE, card_id, project_id)
        return await self.perform(descriptor, apply, persist)

    @staticmethod
    def _coordinate_view(changes: dict[str, Any]) -> dict[str, Any]:
        """x/y as plain keys, for validation."""
        view = dict(changes)
        position = changes.get("position")
        if isinstance(position, LogicalPosition):
            view["x"], view["y"] = position.x, position.y
        elif isinstance(position, dict):
            view["x"], view["y"] = position.get("x"), position.get("y")
        return view

    @staticmethod
    def _wire_partial(changes: dict[str, Any], optimistic: Card) -> dict[str, Any]:
        """Partial row for the durable store; coordinates are the clamped values."""
        wire: dict[str, Any] = {}
        for key, value in changes.items():
            if key in ("x", "y", "position"):
                wire["x"] = optimistic.position.x
                wire["y"] = optimistic.position.y
            elif key == "attributes":
                wire.update(value or {})
            else:
                wire[_WIRE_NAMES.get(key, key)] = value
        return wire
