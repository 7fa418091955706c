"""Data shapes shared by the reconciler, validator, aggregator and propagator."""

from __future__ import annotations

import datetime as dt
from typing import Dict, List, Optional, Union

from typing_extensions import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

LEDGER_KINDS: tuple[str, ...] = ("estimation", "logged", "billed")

ContainerLevel = Literal["task", "subtask", "nano"]

RejectionCode = Literal[
    "invalid_time",
    "zero_time",
    "future_date",
    "daily_cap",
    "foreign_delete",
    "foreign_edit",
    "not_owner",
]
ADVISORY_REJECTION_CODES = frozenset({"foreign_delete", "foreign_edit", "not_owner"})


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)
    user_id: str
    display_name: str = ""


class TimeEntry(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: str
    owner: str
    owner_display_name: str = ""
    hours: int = 0
    minutes: int = 0
    note: Optional[str] = None
    occurred_on: dt.date

    @property
    def minutes_reported(self) -> int:
        return self.hours * 60 + self.minutes


class NewEntry(BaseModel):
    """An entry the client wants to add. ``claimed_owner`` is never trusted."""

    model_config = ConfigDict(frozen=True)
    kind: Literal["new"] = "new"
    hours: int = 0
    minutes: int = 0
    note: Optional[str] = None
    occurred_on: Optional[dt.date] = None
    claimed_owner: Optional[str] = None


class ExistingEntryRef(BaseModel):
    """A reference to a persisted entry; ``None`` fields keep the persisted value."""

    model_config = ConfigDict(frozen=True)
    kind: Literal["existing"] = "existing"
    id: str
    hours: Optional[int] = None
    minutes: Optional[int] = None
    note: Optional[str] = None
    occurred_on: Optional[dt.date] = None
    claimed_owner: Optional[str] = None


EntryEdit = Annotated[Union[NewEntry, ExistingEntryRef], Field(discriminator="kind")]


class Rejection(BaseModel):
    model_config = ConfigDict(frozen=True)
    code: RejectionCode
    message: str
    entry_id: Optional[str] = None

    @property
    def severity(self) -> str:
        return "advisory" if self.code in ADVISORY_REJECTION_CODES else "hard"

    @property
    def is_advisory(self) -> bool:
        return self.severity == "advisory"


class ReconcileResult(BaseModel):
    merged: List[TimeEntry] = Field(default_factory=list)
    rejections: List[Rejection] = Field(default_factory=list)

    @property
    def hard_rejections(self) -> List[Rejection]:
        return [rejection for rejection in self.rejections if not rejection.is_advisory]

    @property
    def advisories(self) -> List[Rejection]:
        return [rejection for rejection in self.rejections if rejection.is_advisory]


class StatsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)
    child_total: int = 0
    child_completed: int = 0
    grandchild_total: Optional[int] = None
    grandchild_completed: Optional[int] = None


class ContainerRecord(BaseModel):
    """Read model of one Task, Subtask or NanoSubtask as the core sees it."""

    level: ContainerLevel
    id: int
    board_id: int
    list_id: Optional[int] = None
    task_id: Optional[int] = None
    subtask_id: Optional[int] = None
    title: str = ""
    status: str = "todo"
    ledger_version: int = 0
    ledgers: Dict[str, List[TimeEntry]] = Field(default_factory=dict)
    stats: Optional[StatsSnapshot] = None

    def ledger(self, kind: str) -> List[TimeEntry]:
        return list(self.ledgers.get(kind, []))
