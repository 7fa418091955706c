"""Daily cap and calendar rules for time entries.

Everything here is pure: callers pass in "today" and the entries to compare
against, nothing is read from storage. The reconciler decides which sibling
entries are relevant for a candidate (only entries that will survive the
reconciliation), this module only does the arithmetic and phrasing.
"""

from __future__ import annotations

import datetime as dt
from typing import Iterable, Optional

from pydantic import BaseModel

from .config import settings
from .ledger import Rejection, TimeEntry
from .utils import day_key, format_minutes, is_future_day, today as current_day

MAX_DAILY_MINUTES = 24 * 60


class ValidationResult(BaseModel):
    rejection: Optional[Rejection] = None
    remaining_minutes: int = MAX_DAILY_MINUTES

    @property
    def valid(self) -> bool:
        return self.rejection is None


def _cap_label(cap: int) -> str:
    if cap % 60 == 0:
        return f"{cap // 60} hours"
    return format_minutes(cap)


def check_time_values(hours: int, minutes: int, entry_id: Optional[str] = None) -> Optional[Rejection]:
    if hours < 0 or minutes < 0:
        return Rejection(code="invalid_time", message="Time values cannot be negative", entry_id=entry_id)
    if minutes > 59:
        return Rejection(
            code="invalid_time",
            message=f"Minutes must be between 0 and 59, got {minutes}",
            entry_id=entry_id,
        )
    if hours * 60 + minutes == 0:
        return Rejection(code="zero_time", message="Time entry must have non-zero time", entry_id=entry_id)
    return None


def check_not_future(day: dt.date, reference: dt.date, entry_id: Optional[str] = None) -> Optional[Rejection]:
    if is_future_day(day, reference):
        return Rejection(
            code="future_date",
            message=f"Cannot add time entries for future dates. Selected date: {day_key(day)}",
            entry_id=entry_id,
        )
    return None


def minutes_for_day(
    entries: Iterable[TimeEntry],
    owner: str,
    day: dt.date,
    excluding_entry_id: Optional[str] = None,
) -> int:
    """Sum the minutes ``owner`` reported on ``day``, skipping one entry id if given."""
    target = day_key(day)
    total = 0
    for entry in entries:
        if excluding_entry_id is not None and entry.id == excluding_entry_id:
            continue
        if entry.owner != owner or day_key(entry.occurred_on) != target:
            continue
        total += entry.minutes_reported
    return total


def check_daily_cap(
    candidate: TimeEntry,
    sibling_entries: Iterable[TimeEntry],
    excluding_entry_id: Optional[str] = None,
    cap: Optional[int] = None,
) -> ValidationResult:
    limit = settings.daily_cap_minutes if cap is None else cap
    existing = minutes_for_day(sibling_entries, candidate.owner, candidate.occurred_on, excluding_entry_id)
    total = existing + candidate.minutes_reported
    if total > limit:
        remaining = max(limit - existing, 0)
        message = (
            f"Total time for {day_key(candidate.occurred_on)} cannot exceed {_cap_label(limit)}. "
            f"You have already logged {format_minutes(existing)}. "
            f"Maximum you can add: {format_minutes(remaining)}."
        )
        return ValidationResult(
            rejection=Rejection(code="daily_cap", message=message, entry_id=candidate.id),
            remaining_minutes=remaining,
        )
    return ValidationResult(remaining_minutes=limit - total)


def validate(
    candidate: TimeEntry,
    sibling_entries: Iterable[TimeEntry],
    excluding_entry_id: Optional[str] = None,
    *,
    today: Optional[dt.date] = None,
    cap: Optional[int] = None,
) -> ValidationResult:
    """Run every admission check for one entry that is being added or edited by its owner.

    This is the single-entry form. :func:`taskledger.reconciler.reconcile` runs the
    same checks in two passes (values and dates first, then the daily cap against
    the surviving set) so that several entries in one request are judged together.
    """
    limit = settings.daily_cap_minutes if cap is None else cap
    rejection = check_time_values(candidate.hours, candidate.minutes, candidate.id)
    if rejection is None:
        rejection = check_not_future(candidate.occurred_on, today or current_day(), candidate.id)
    if rejection is not None:
        return ValidationResult(rejection=rejection, remaining_minutes=limit)
    return check_daily_cap(candidate, sibling_entries, excluding_entry_id, limit)
