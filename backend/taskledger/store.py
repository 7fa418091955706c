from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple

from typing_extensions import Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import NotFoundError, StaleLedgerError, StaleStatusError
from .ledger import LEDGER_KINDS, ContainerRecord, StatsSnapshot, TimeEntry
from .models import LEDGER_COLUMNS, MODEL_BY_LEVEL, NanoSubtask, Subtask, Task, utcnow

LEVEL_LABELS = {"task": "Task", "subtask": "Subtask", "nano": "Subtask-Nano"}


class ContainerStore(Protocol):
    def load_container(self, level: str, container_id: int) -> ContainerRecord: ...

    def replace_ledger(
        self,
        level: str,
        container_id: int,
        kind: str,
        ledger: Sequence[TimeEntry],
        expected_version: int,
    ) -> int: ...

    def update_snapshot(self, level: str, container_id: int, snapshot: StatsSnapshot) -> None: ...

    def child_statuses(self, level: str, container_id: int) -> Tuple[List[str], List[str]]: ...

    def descendant_ids(self, level: str, container_id: int) -> Tuple[List[int], List[int]]: ...

    def set_status(self, level: str, container_id: int, status: str, expected_status: str) -> None: ...


def _decode_ledger(raw: Optional[List[Any]]) -> List[TimeEntry]:
    return [TimeEntry.model_validate(item) for item in raw or []]


def _encode_ledger(ledger: Sequence[TimeEntry]) -> List[dict]:
    return [entry.model_dump(mode="json") for entry in ledger]


class SqlAlchemyStore:
    """Container persistence on top of one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def _get(self, level: str, container_id: int, *, refresh: bool = False):
        model = MODEL_BY_LEVEL.get(level)
        if model is None:
            raise NotFoundError("Container level", level)
        obj = self.db.get(model, container_id, populate_existing=refresh)
        if obj is None:
            raise NotFoundError(LEVEL_LABELS[level], container_id)
        return obj

    def load_container(self, level: str, container_id: int) -> ContainerRecord:
        obj = self._get(level, container_id, refresh=True)
        ledgers = {kind: _decode_ledger(getattr(obj, LEDGER_COLUMNS[kind])) for kind in LEDGER_KINDS}
        record: dict[str, Any] = {
            "level": level,
            "id": obj.id,
            "board_id": obj.board_id,
            "title": obj.title,
            "status": obj.status,
            "ledger_version": obj.ledger_version or 0,
            "ledgers": ledgers,
        }
        if level == "task":
            record["list_id"] = obj.list_id
            record["stats"] = StatsSnapshot(
                child_total=obj.subtask_total,
                child_completed=obj.subtask_completed,
                grandchild_total=obj.nano_total,
                grandchild_completed=obj.nano_completed,
            )
        elif level == "subtask":
            record["task_id"] = obj.task_id
            record["list_id"] = self._list_id_for_task(obj.task_id)
            record["stats"] = StatsSnapshot(child_total=obj.nano_total, child_completed=obj.nano_completed)
        else:
            record["task_id"] = obj.task_id
            record["subtask_id"] = obj.subtask_id
            record["list_id"] = self._list_id_for_task(obj.task_id)
        return ContainerRecord(**record)

    def _list_id_for_task(self, task_id: int) -> Optional[int]:
        return self.db.execute(select(Task.list_id).where(Task.id == task_id)).scalar_one_or_none()

    def replace_ledger(
        self,
        level: str,
        container_id: int,
        kind: str,
        ledger: Sequence[TimeEntry],
        expected_version: int,
    ) -> int:
        """Write ``ledger`` only if nobody bumped the version since it was loaded."""
        model = MODEL_BY_LEVEL[level]
        column = LEDGER_COLUMNS[kind]
        new_version = expected_version + 1
        result = self.db.execute(
            update(model)
            .where(model.id == container_id, model.ledger_version == expected_version)
            .values({column: _encode_ledger(ledger), "ledger_version": new_version, "updated_at": utcnow()})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StaleLedgerError(level, container_id, expected_version)
        self.db.commit()
        return new_version

    def update_snapshot(self, level: str, container_id: int, snapshot: StatsSnapshot) -> None:
        if level == "task":
            values = {
                "subtask_total": snapshot.child_total,
                "subtask_completed": snapshot.child_completed,
                "nano_total": snapshot.grandchild_total or 0,
                "nano_completed": snapshot.grandchild_completed or 0,
            }
        elif level == "subtask":
            values = {"nano_total": snapshot.child_total, "nano_completed": snapshot.child_completed}
        else:
            return
        model = MODEL_BY_LEVEL[level]
        self.db.execute(
            update(model)
            .where(model.id == container_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def child_statuses(self, level: str, container_id: int) -> Tuple[List[str], List[str]]:
        if level == "task":
            subtasks = self.db.execute(select(Subtask.status).where(Subtask.task_id == container_id)).scalars()
            nanos = self.db.execute(select(NanoSubtask.status).where(NanoSubtask.task_id == container_id)).scalars()
            return list(subtasks), list(nanos)
        if level == "subtask":
            nanos = self.db.execute(
                select(NanoSubtask.status).where(NanoSubtask.subtask_id == container_id)
            ).scalars()
            return list(nanos), []
        return [], []

    def descendant_ids(self, level: str, container_id: int) -> Tuple[List[int], List[int]]:
        """Return the ids of the subtasks and nanos below a container."""
        if level == "task":
            subtasks = self.db.execute(select(Subtask.id).where(Subtask.task_id == container_id)).scalars()
            nanos = self.db.execute(select(NanoSubtask.id).where(NanoSubtask.task_id == container_id)).scalars()
            return list(subtasks), list(nanos)
        if level == "subtask":
            nanos = self.db.execute(select(NanoSubtask.id).where(NanoSubtask.subtask_id == container_id)).scalars()
            return [], list(nanos)
        return [], []

    def set_status(self, level: str, container_id: int, status: str, expected_status: str) -> None:
        """Move the status from ``expected_status`` to ``status`` or raise if it already moved."""
        model = MODEL_BY_LEVEL[level]
        result = self.db.execute(
            update(model)
            .where(model.id == container_id, model.status == expected_status)
            .values(status=status, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self._get(level, container_id)
            raise StaleStatusError(level, container_id, expected_status)
        self.db.commit()
