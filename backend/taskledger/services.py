"""Container CRUD used by the HTTP layer.

Creating, deleting and reordering containers is plain plumbing; the only
thing that matters to the core is that every structural change is reported
to the propagator so parent rollups and caches follow.
"""

from __future__ import annotations

from typing import List

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .ledger import ContainerRecord
from .models import MODEL_BY_LEVEL, NanoSubtask, Subtask, Task
from .propagator import ChangePropagator
from .schemas import ChildCreateRequest, TaskCreateRequest


def _next_order(db: Session, model, parent_column, parent_id: int) -> int:
    count = db.execute(select(func.count()).select_from(model).where(parent_column == parent_id)).scalar_one()
    return int(count or 0)


def _created(propagator: ChangePropagator, level: str, container_id: int) -> ContainerRecord:
    record = propagator.store.load_container(level, container_id)
    propagator.structure_changed(record, "created")
    return record


def create_task(db: Session, propagator: ChangePropagator, payload: TaskCreateRequest) -> ContainerRecord:
    task = Task(
        board_id=payload.board_id,
        list_id=payload.list_id,
        title=payload.title,
        description=payload.description,
        status=payload.status,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return _created(propagator, "task", task.id)


def create_subtask(
    db: Session,
    propagator: ChangePropagator,
    task_id: int,
    payload: ChildCreateRequest,
) -> ContainerRecord:
    task = db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    order = payload.order if payload.order is not None else _next_order(db, Subtask, Subtask.task_id, task_id)
    subtask = Subtask(
        task_id=task.id,
        board_id=task.board_id,
        title=payload.title,
        description=payload.description,
        status=payload.status,
        order=order,
    )
    db.add(subtask)
    db.commit()
    db.refresh(subtask)
    return _created(propagator, "subtask", subtask.id)


def create_nano(
    db: Session,
    propagator: ChangePropagator,
    subtask_id: int,
    payload: ChildCreateRequest,
) -> ContainerRecord:
    subtask = db.get(Subtask, subtask_id)
    if not subtask:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subtask not found")
    order = (
        payload.order
        if payload.order is not None
        else _next_order(db, NanoSubtask, NanoSubtask.subtask_id, subtask_id)
    )
    nano = NanoSubtask(
        subtask_id=subtask.id,
        task_id=subtask.task_id,
        board_id=subtask.board_id,
        title=payload.title,
        description=payload.description,
        status=payload.status,
        order=order,
    )
    db.add(nano)
    db.commit()
    db.refresh(nano)
    return _created(propagator, "nano", nano.id)


def delete_container(db: Session, propagator: ChangePropagator, level: str, container_id: int) -> None:
    # Load first so parents and descendants are known once the rows are gone.
    record = propagator.store.load_container(level, container_id)
    removed = propagator.store.descendant_ids(level, container_id)
    obj = db.get(MODEL_BY_LEVEL[level], container_id)
    db.delete(obj)
    db.commit()
    propagator.structure_changed(record, "deleted", removed=removed)


def reorder_children(
    db: Session,
    propagator: ChangePropagator,
    level: str,
    parent_id: int,
    ordered_ids: List[int],
) -> List[int]:
    """Reorder the subtasks of a task or the nanos of a subtask."""
    if level == "task":
        model, parent_column = Subtask, Subtask.task_id
    elif level == "subtask":
        model, parent_column = NanoSubtask, NanoSubtask.subtask_id
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nano-subtasks have no children")
    parent = propagator.store.load_container(level, parent_id)
    children = db.execute(select(model).where(parent_column == parent_id)).scalars().all()
    by_id = {child.id: child for child in children}
    if sorted(ordered_ids) != sorted(by_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="orderedIds must list every child exactly once",
        )
    for position, child_id in enumerate(ordered_ids):
        by_id[child_id].order = position
        db.add(by_id[child_id])
    db.commit()
    propagator.structure_changed(parent, "reordered")
    return list(ordered_ids)
