"""Completion rollups for the task → subtask → nano-subtask hierarchy.

Snapshots are always rebuilt from the children's current statuses, never
patched with deltas.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from .config import settings
from .ledger import ContainerRecord, StatsSnapshot
from .store import ContainerStore

logger = logging.getLogger(__name__)


def summarize(statuses: Iterable[str], completed: Iterable[str]) -> Tuple[int, int]:
    """Return ``(total, completed)`` for a list of child statuses."""
    completed_set = set(completed)
    total = 0
    done = 0
    for status in statuses:
        total += 1
        if status in completed_set:
            done += 1
    return total, done


def task_snapshot(
    subtask_statuses: Iterable[str],
    nano_statuses: Iterable[str],
    completed: Iterable[str],
) -> StatsSnapshot:
    completed_set = set(completed)
    child_total, child_completed = summarize(subtask_statuses, completed_set)
    grandchild_total, grandchild_completed = summarize(nano_statuses, completed_set)
    return StatsSnapshot(
        child_total=child_total,
        child_completed=child_completed,
        grandchild_total=grandchild_total,
        grandchild_completed=grandchild_completed,
    )


def subtask_snapshot(nano_statuses: Iterable[str], completed: Iterable[str]) -> StatsSnapshot:
    child_total, child_completed = summarize(nano_statuses, completed)
    return StatsSnapshot(child_total=child_total, child_completed=child_completed)


def parent_chain(record: ContainerRecord) -> List[Tuple[str, int]]:
    """Containers whose snapshots depend on ``record``, nearest first."""
    if record.level == "nano":
        return [("subtask", record.subtask_id), ("task", record.task_id)]
    if record.level == "subtask":
        return [("task", record.task_id)]
    return []


class HierarchyAggregator:
    def __init__(self, store: ContainerStore, completed_statuses: Optional[Iterable[str]] = None):
        self.store = store
        self.completed = frozenset(
            settings.completed_statuses if completed_statuses is None else completed_statuses
        )

    def recompute(self, container_id: int, level: str) -> Optional[StatsSnapshot]:
        """Rebuild and store the snapshot of one container. Nanos have none."""
        if level == "nano":
            return None
        children, grandchildren = self.store.child_statuses(level, container_id)
        if level == "task":
            snapshot = task_snapshot(children, grandchildren, self.completed)
        else:
            snapshot = subtask_snapshot(children, self.completed)
        self.store.update_snapshot(level, container_id, snapshot)
        logger.debug("Recomputed %s %s stats: %s", level, container_id, snapshot)
        return snapshot

    def recompute_chain(self, record: ContainerRecord) -> List[Tuple[str, int, StatsSnapshot]]:
        """Recompute every ancestor of ``record`` bottom-up (subtask before task)."""
        results: List[Tuple[str, int, StatsSnapshot]] = []
        for level, container_id in parent_chain(record):
            if container_id is None:
                continue
            snapshot = self.recompute(container_id, level)
            if snapshot is not None:
                results.append((level, container_id, snapshot))
        return results
