"""End-to-end handling of one ledger or status mutation.

load -> reconcile -> persist is the durability boundary: if any of these fail
the caller gets the error and nothing downstream runs. Rollups, cache
invalidation, broadcast and the completion hook run afterwards and are best
effort; their failures are logged and never change the result.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from . import reconciler
from .aggregator import HierarchyAggregator
from .channels import Broadcaster, CacheInvalidator, CompletionScheduler, InvalidationScope, build_topic
from .config import settings
from .errors import (
    AuthorizationError,
    ConcurrentModificationError,
    HardValidationError,
    NotFoundError,
    PropagationError,
    StaleLedgerError,
    StaleStatusError,
)
from .ledger import (
    LEDGER_KINDS,
    ContainerRecord,
    EntryEdit,
    Identity,
    NewEntry,
    ReconcileResult,
    Rejection,
    TimeEntry,
)
from .store import ContainerStore
from .utils import today as current_day

logger = logging.getLogger(__name__)


class LedgerOutcome(BaseModel):
    level: str
    container_id: int
    kind: str
    applied: bool = True
    ledger_version: int
    entries: List[TimeEntry] = Field(default_factory=list)
    warnings: List[Rejection] = Field(default_factory=list)


class StatusOutcome(BaseModel):
    level: str
    container_id: int
    previous_status: str
    status: str
    completion_hook_called: bool = False


def invalidation_scope(record: ContainerRecord) -> InvalidationScope:
    if record.level == "task":
        return InvalidationScope(board_id=record.board_id, list_id=record.list_id, task_id=record.id)
    if record.level == "subtask":
        return InvalidationScope(
            board_id=record.board_id,
            list_id=record.list_id,
            task_id=record.task_id,
            subtask_id=record.id,
        )
    return InvalidationScope(
        board_id=record.board_id,
        list_id=record.list_id,
        task_id=record.task_id,
        subtask_id=record.subtask_id,
        nano_id=record.id,
    )


class ChangePropagator:
    def __init__(
        self,
        store: ContainerStore,
        cache: CacheInvalidator,
        broadcaster: Broadcaster,
        scheduler: Optional[CompletionScheduler] = None,
        *,
        aggregator: Optional[HierarchyAggregator] = None,
        clock: Callable[[], dt.date] = current_day,
        id_factory: Optional[Callable[[], str]] = None,
        max_attempts: Optional[int] = None,
        terminal_statuses: Optional[Iterable[str]] = None,
        daily_cap: Optional[int] = None,
    ):
        self.store = store
        self.cache = cache
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.aggregator = aggregator or HierarchyAggregator(store)
        self.clock = clock
        self.id_factory = id_factory
        self.max_attempts = max(1, max_attempts or settings.max_reconcile_attempts)
        self.terminal_statuses = frozenset(
            settings.terminal_statuses if terminal_statuses is None else terminal_statuses
        )
        self.daily_cap = daily_cap

    # -- ledger mutations -------------------------------------------------

    def apply_ledger_edits(
        self,
        level: str,
        container_id: int,
        kind: str,
        edits: Sequence[EntryEdit],
        requester: Identity,
    ) -> LedgerOutcome:
        """Reconcile a full client-side ledger against the stored one."""
        return self._mutate_ledger(
            level,
            container_id,
            kind,
            lambda ledger: reconciler.reconcile(ledger, edits, requester, **self._options()),
        )

    def add_entry(
        self,
        level: str,
        container_id: int,
        kind: str,
        entry: NewEntry,
        requester: Identity,
    ) -> LedgerOutcome:
        return self._mutate_ledger(
            level,
            container_id,
            kind,
            lambda ledger: reconciler.add_entry(ledger, entry, requester, **self._options()),
        )

    def edit_entry(
        self,
        level: str,
        container_id: int,
        kind: str,
        entry_id: str,
        requester: Identity,
        *,
        hours: Optional[int] = None,
        minutes: Optional[int] = None,
        note: Optional[str] = None,
    ) -> LedgerOutcome:
        return self._mutate_ledger(
            level,
            container_id,
            kind,
            lambda ledger: reconciler.edit_entry(
                ledger,
                entry_id,
                requester,
                hours=hours,
                minutes=minutes,
                note=note,
                **self._options(),
            ),
        )

    def delete_entry(
        self,
        level: str,
        container_id: int,
        kind: str,
        entry_id: str,
        requester: Identity,
    ) -> LedgerOutcome:
        return self._mutate_ledger(
            level,
            container_id,
            kind,
            lambda ledger: reconciler.remove_entry(ledger, entry_id, requester, **self._options()),
        )

    def _options(self) -> Dict[str, Any]:
        return {"today": self.clock(), "id_factory": self.id_factory, "cap": self.daily_cap}

    def _mutate_ledger(
        self,
        level: str,
        container_id: int,
        kind: str,
        compute: Callable[[List[TimeEntry]], ReconcileResult],
    ) -> LedgerOutcome:
        if kind not in LEDGER_KINDS:
            raise NotFoundError("Ledger", kind)
        for attempt in range(1, self.max_attempts + 1):
            record = self.store.load_container(level, container_id)
            current = record.ledger(kind)
            try:
                result = compute(current)
            except AuthorizationError as exc:
                logger.warning(
                    "User %s tried to %s entry %s on %s %s", exc.requester_id, exc.action, exc.entry_id, level, container_id
                )
                return LedgerOutcome(
                    level=level,
                    container_id=container_id,
                    kind=kind,
                    applied=False,
                    ledger_version=record.ledger_version,
                    entries=current,
                    warnings=[Rejection(code="not_owner", message=str(exc), entry_id=exc.entry_id)],
                )
            if result.hard_rejections:
                raise HardValidationError(result.rejections)
            try:
                version = self.store.replace_ledger(level, container_id, kind, result.merged, record.ledger_version)
            except StaleLedgerError:
                logger.info(
                    "%s %s changed during reconciliation (attempt %d/%d)", level, container_id, attempt, self.max_attempts
                )
                continue
            for advisory in result.advisories:
                logger.info("Advisory on %s %s %s ledger: %s", level, container_id, kind, advisory.message)
            self._after_commit(record, "updated")
            return LedgerOutcome(
                level=level,
                container_id=container_id,
                kind=kind,
                ledger_version=version,
                entries=result.merged,
                warnings=result.advisories,
            )
        raise ConcurrentModificationError(level, container_id, self.max_attempts)

    # -- status and structure --------------------------------------------

    def change_status(self, level: str, container_id: int, status: str) -> StatusOutcome:
        """Compare-and-swap the status; only the writer that enters a terminal status fires the hook."""
        for attempt in range(1, self.max_attempts + 1):
            record = self.store.load_container(level, container_id)
            previous = record.status
            try:
                self.store.set_status(level, container_id, status, previous)
            except StaleStatusError:
                logger.info(
                    "%s %s status changed concurrently (attempt %d/%d)", level, container_id, attempt, self.max_attempts
                )
                continue
            break
        else:
            raise ConcurrentModificationError(level, container_id, self.max_attempts)
        self._after_commit(record.model_copy(update={"status": status}), "updated")
        called = False
        if previous not in self.terminal_statuses and status in self.terminal_statuses:
            called = self._notify_completion(level, container_id, status)
        return StatusOutcome(
            level=level,
            container_id=container_id,
            previous_status=previous,
            status=status,
            completion_hook_called=called,
        )

    def structure_changed(
        self,
        record: ContainerRecord,
        event: str,
        removed: Optional[Tuple[Sequence[int], Sequence[int]]] = None,
    ) -> None:
        """Called by the CRUD layer after a container was created, deleted or reordered.

        ``removed`` holds the subtask and nano ids that were cascade-deleted with ``record``.
        """
        scope = invalidation_scope(record)
        if removed is not None:
            subtask_ids, nano_ids = removed
            scope = scope.model_copy(
                update={"removed_subtask_ids": tuple(subtask_ids), "removed_nano_ids": tuple(nano_ids)}
            )
        self._after_commit(record, event, reload=event != "deleted", scope=scope)

    # -- best-effort tail ---------------------------------------------------

    def _after_commit(
        self,
        record: ContainerRecord,
        event: str,
        *,
        reload: bool = True,
        scope: Optional[InvalidationScope] = None,
    ) -> None:
        try:
            self.aggregator.recompute_chain(record)
        except Exception as exc:
            self._report(PropagationError("aggregation", f"{record.level} {record.id}", exc))

        try:
            self.cache.invalidate(scope or invalidation_scope(record))
        except Exception as exc:
            self._report(PropagationError("cache invalidation", f"{record.level} {record.id}", exc))

        try:
            current = self.store.load_container(record.level, record.id) if reload else record
            self.broadcaster.publish(build_topic(record.board_id, event), self._payload(current, event))
        except Exception as exc:
            self._report(PropagationError("broadcast", f"{record.level} {record.id}", exc))

    def _notify_completion(self, level: str, container_id: int, status: str) -> bool:
        if self.scheduler is None:
            return False
        try:
            self.scheduler.on_completed(level, container_id, status)
        except Exception as exc:
            self._report(PropagationError("completion hook", f"{level} {container_id}", exc))
            return False
        return True

    @staticmethod
    def _payload(record: ContainerRecord, event: str) -> Dict[str, Any]:
        return {
            "type": event,
            "level": record.level,
            "id": record.id,
            "task_id": record.task_id,
            "subtask_id": record.subtask_id,
            "container": record.model_dump(mode="json"),
        }

    @staticmethod
    def _report(error: PropagationError) -> None:
        logger.warning("%s", error, exc_info=error.cause)
