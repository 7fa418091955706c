from __future__ import annotations

import datetime as dt

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


# Ledger kind -> column holding that ledger on every container table.
LEDGER_COLUMNS = {
    "estimation": "estimation_time",
    "logged": "logged_time",
    "billed": "billed_time",
}


class LedgerColumnsMixin:
    """Three JSON ledgers plus the version stamp guarding them."""

    estimation_time = Column(SQLiteJSON, nullable=False, default=list)
    logged_time = Column(SQLiteJSON, nullable=False, default=list)
    billed_time = Column(SQLiteJSON, nullable=False, default=list)
    ledger_version = Column(Integer, nullable=False, default=0)


class Task(LedgerColumnsMixin, Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    board_id = Column(Integer, nullable=False, index=True)
    list_id = Column(Integer, nullable=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default="todo", index=True)
    subtask_total = Column(Integer, nullable=False, default=0)
    subtask_completed = Column(Integer, nullable=False, default=0)
    nano_total = Column(Integer, nullable=False, default=0)
    nano_completed = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    subtasks = relationship(
        "Subtask",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="Subtask.order",
    )


class Subtask(LedgerColumnsMixin, Base):
    __tablename__ = "subtasks"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    board_id = Column(Integer, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default="todo", index=True)
    order = Column(Integer, nullable=False, default=0)
    nano_total = Column(Integer, nullable=False, default=0)
    nano_completed = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    task = relationship("Task", back_populates="subtasks")
    nanos = relationship(
        "NanoSubtask",
        back_populates="subtask",
        cascade="all, delete-orphan",
        order_by="NanoSubtask.order",
    )


class NanoSubtask(LedgerColumnsMixin, Base):
    __tablename__ = "subtask_nanos"

    id = Column(Integer, primary_key=True, index=True)
    subtask_id = Column(Integer, ForeignKey("subtasks.id"), nullable=False, index=True)
    # Denormalized so task-level rollups need a single query.
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    board_id = Column(Integer, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default="todo", index=True)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    subtask = relationship("Subtask", back_populates="nanos")


MODEL_BY_LEVEL = {
    "task": Task,
    "subtask": Subtask,
    "nano": NanoSubtask,
}
