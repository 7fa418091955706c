from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .ledger import ContainerRecord, ExistingEntryRef, NewEntry, Rejection, StatsSnapshot, TimeEntry
from .utils import normalize_identifier


class EntryPayload(BaseModel):
    """One entry as a client sends it inside a full ledger update.

    ``reason`` and ``description`` are accepted as aliases of ``note``; ``user``
    is whatever owner the client claims and is never trusted.
    """

    model_config = ConfigDict(populate_by_name=True)
    id: Optional[str] = None
    hours: Optional[int] = None
    minutes: Optional[int] = None
    note: Optional[str] = None
    reason: Optional[str] = None
    description: Optional[str] = None
    occurred_on: Optional[dt.date] = Field(default=None, alias="date")
    user: Optional[str] = None

    def _note(self) -> Optional[str]:
        for value in (self.note, self.reason, self.description):
            if value is not None:
                return value
        return None

    def to_edit(self) -> Union[NewEntry, ExistingEntryRef]:
        entry_id = normalize_identifier(self.id)
        if entry_id is not None:
            return ExistingEntryRef(
                id=entry_id,
                hours=self.hours,
                minutes=self.minutes,
                note=self._note(),
                occurred_on=self.occurred_on,
                claimed_owner=self.user,
            )
        return NewEntry(
            hours=self.hours or 0,
            minutes=self.minutes or 0,
            note=self._note(),
            occurred_on=self.occurred_on,
            claimed_owner=self.user,
        )


class LedgerUpdateRequest(BaseModel):
    entries: List[EntryPayload] = Field(default_factory=list)


class EntryCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    hours: int = 0
    minutes: int = 0
    note: Optional[str] = None
    occurred_on: Optional[dt.date] = Field(default=None, alias="date")

    def to_edit(self) -> NewEntry:
        return NewEntry(hours=self.hours, minutes=self.minutes, note=self.note, occurred_on=self.occurred_on)


class EntryUpdateRequest(BaseModel):
    hours: Optional[int] = None
    minutes: Optional[int] = None
    note: Optional[str] = None


class TimeEntryResponse(BaseModel):
    id: str
    owner: str
    owner_display_name: str
    hours: int
    minutes: int
    minutes_reported: int
    note: Optional[str]
    occurred_on: dt.date

    @classmethod
    def from_entry(cls, entry: TimeEntry) -> "TimeEntryResponse":
        return cls(minutes_reported=entry.minutes_reported, **entry.model_dump())


class RejectionResponse(BaseModel):
    code: str
    severity: str
    message: str
    entry_id: Optional[str] = None

    @classmethod
    def from_rejection(cls, rejection: Rejection) -> "RejectionResponse":
        return cls(severity=rejection.severity, **rejection.model_dump())


class LedgerResponse(BaseModel):
    level: str
    container_id: int
    kind: str
    applied: bool
    ledger_version: int
    total_minutes: int
    entries: List[TimeEntryResponse]
    warnings: List[RejectionResponse] = Field(default_factory=list)


class ValidationErrorResponse(BaseModel):
    detail: str
    rejections: List[RejectionResponse]


class StatsResponse(BaseModel):
    child_total: int
    child_completed: int
    grandchild_total: Optional[int] = None
    grandchild_completed: Optional[int] = None

    @classmethod
    def from_snapshot(cls, snapshot: StatsSnapshot) -> "StatsResponse":
        return cls(**snapshot.model_dump())


class ContainerResponse(BaseModel):
    level: str
    id: int
    board_id: int
    list_id: Optional[int] = None
    task_id: Optional[int] = None
    subtask_id: Optional[int] = None
    title: str
    status: str
    ledger_version: int
    ledgers: Dict[str, List[TimeEntryResponse]]
    totals: Dict[str, int]
    stats: Optional[StatsResponse] = None

    @classmethod
    def from_record(cls, record: ContainerRecord) -> "ContainerResponse":
        return cls(
            level=record.level,
            id=record.id,
            board_id=record.board_id,
            list_id=record.list_id,
            task_id=record.task_id,
            subtask_id=record.subtask_id,
            title=record.title,
            status=record.status,
            ledger_version=record.ledger_version,
            ledgers={
                kind: [TimeEntryResponse.from_entry(entry) for entry in entries]
                for kind, entries in record.ledgers.items()
            },
            totals={kind: sum(entry.minutes_reported for entry in entries) for kind, entries in record.ledgers.items()},
            stats=StatsResponse.from_snapshot(record.stats) if record.stats else None,
        )


class TaskCreateRequest(BaseModel):
    board_id: int
    list_id: Optional[int] = None
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    status: str = "todo"


class ChildCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    status: str = "todo"
    order: Optional[int] = None


class StatusUpdateRequest(BaseModel):
    status: str = Field(min_length=1, max_length=50)


class StatusResponse(BaseModel):
    level: str
    container_id: int
    previous_status: str
    status: str
    completion_hook_called: bool


class ReorderRequest(BaseModel):
    ordered_ids: List[int] = Field(alias="orderedIds")

    model_config = ConfigDict(populate_by_name=True)


class BroadcastEventResponse(BaseModel):
    topic: str
    payload: Dict[str, Any]
