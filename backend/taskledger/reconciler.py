"""Merge client-submitted ledger edits into the persisted ledger.

Rules, in short:

* entries are bound to their creator forever (``owner``, ``owner_display_name``
  and ``occurred_on`` never change after admission);
* the requester may edit or delete only their own entries, anything else they
  send for foreign entries is ignored;
* foreign entries missing from the request are restored and reported back as
  advisory rejections;
* new entries always belong to the requester and must pass the daily cap and
  calendar checks in :mod:`taskledger.validation`.

The module is pure: no storage, no clock unless ``today`` is omitted.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Callable, Iterable, List, Optional, Sequence, Set

from .errors import AuthorizationError, NotFoundError
from .ledger import (
    EntryEdit,
    ExistingEntryRef,
    Identity,
    NewEntry,
    ReconcileResult,
    Rejection,
    TimeEntry,
)
from .utils import today as current_day
from .validation import check_daily_cap, check_not_future, check_time_values

logger = logging.getLogger(__name__)


def _new_entry_id() -> str:
    return uuid.uuid4().hex


class _Slot:
    """One entry of the merged ledger while it is being assembled."""

    __slots__ = ("entry", "fallback", "candidate", "is_new", "rejection")

    def __init__(
        self,
        entry: TimeEntry,
        *,
        fallback: Optional[TimeEntry] = None,
        candidate: bool = False,
        is_new: bool = False,
    ):
        self.entry = entry
        self.fallback = fallback
        self.candidate = candidate
        self.is_new = is_new
        self.rejection: Optional[Rejection] = None

    def resolved(self) -> Optional[TimeEntry]:
        if self.rejection is None:
            return self.entry
        return self.fallback


def _attempts_change(original: TimeEntry, edit: ExistingEntryRef) -> bool:
    if edit.hours is not None and edit.hours != original.hours:
        return True
    if edit.minutes is not None and edit.minutes != original.minutes:
        return True
    if edit.note is not None and edit.note != original.note:
        return True
    if edit.occurred_on is not None and edit.occurred_on != original.occurred_on:
        return True
    if edit.claimed_owner is not None and edit.claimed_owner != original.owner:
        return True
    return False


def _apply_owner_edit(original: TimeEntry, edit: ExistingEntryRef) -> TimeEntry:
    # owner, owner_display_name and occurred_on always come from the stored entry
    return original.model_copy(
        update={
            "hours": original.hours if edit.hours is None else edit.hours,
            "minutes": original.minutes if edit.minutes is None else edit.minutes,
            "note": original.note if edit.note is None else edit.note,
        }
    )


def _admit_new(
    edit: EntryEdit,
    requester: Identity,
    reference: dt.date,
    make_id: Callable[[], str],
) -> TimeEntry:
    if edit.claimed_owner and edit.claimed_owner != requester.user_id:
        logger.info(
            "Ignoring claimed owner %s on new entry submitted by %s", edit.claimed_owner, requester.user_id
        )
    return TimeEntry(
        id=make_id(),
        owner=requester.user_id,
        owner_display_name=requester.display_name,
        hours=edit.hours or 0,
        minutes=edit.minutes or 0,
        note=edit.note,
        occurred_on=edit.occurred_on or reference,
    )


def reconcile(
    persisted: Sequence[TimeEntry],
    incoming: Iterable[EntryEdit],
    requester: Identity,
    *,
    today: Optional[dt.date] = None,
    id_factory: Optional[Callable[[], str]] = None,
    cap: Optional[int] = None,
) -> ReconcileResult:
    """Return the merged ledger and every rejection produced while merging."""
    reference = today or current_day()
    make_id = id_factory or _new_entry_id
    persisted_by_id = {entry.id: entry for entry in persisted}
    referenced: Set[str] = set()
    rejections: List[Rejection] = []
    slots: List[_Slot] = []

    for edit in incoming:
        if isinstance(edit, ExistingEntryRef) and edit.id in persisted_by_id:
            if edit.id in referenced:
                continue
            referenced.add(edit.id)
            original = persisted_by_id[edit.id]
            if original.owner != requester.user_id:
                if _attempts_change(original, edit):
                    rejections.append(
                        Rejection(
                            code="foreign_edit",
                            message=(
                                "Cannot edit time entries created by other users. "
                                f"Entry {original.id} by {original.owner_display_name or original.owner} was kept unchanged."
                            ),
                            entry_id=original.id,
                        )
                    )
                slots.append(_Slot(original))
                continue
            updated = _apply_owner_edit(original, edit)
            if updated == original:
                slots.append(_Slot(original))
            else:
                slots.append(_Slot(updated, fallback=original, candidate=True))
            continue
        slots.append(_Slot(_admit_new(edit, requester, reference, make_id), candidate=True, is_new=True))

    restored: List[TimeEntry] = []
    for entry in persisted:
        if entry.id in referenced or entry.owner == requester.user_id:
            continue
        logger.debug("Refusing deletion of entry %s owned by %s", entry.id, entry.owner)
        restored.append(entry)
        rejections.append(
            Rejection(
                code="foreign_delete",
                message=(
                    "Cannot delete time entries created by other users. "
                    f"Entry {entry.id} by {entry.owner_display_name or entry.owner} was preserved."
                ),
                entry_id=entry.id,
            )
        )

    candidates = [slot for slot in slots if slot.candidate]
    for slot in candidates:
        slot.rejection = check_time_values(slot.entry.hours, slot.entry.minutes, slot.entry.id)
        if slot.rejection is None and slot.is_new:
            slot.rejection = check_not_future(slot.entry.occurred_on, reference, slot.entry.id)

    # Every cap check sees the same survivor set, so the outcome does not
    # depend on the order the edits were submitted in.
    survivors = [slot for slot in slots if slot.rejection is None]
    cap_rejections = {}
    for slot in candidates:
        if slot.rejection is not None:
            continue
        siblings = [other.entry for other in survivors if other is not slot]
        result = check_daily_cap(slot.entry, siblings, cap=cap)
        if not result.valid:
            cap_rejections[id(slot)] = result.rejection
    for slot in candidates:
        if id(slot) in cap_rejections:
            slot.rejection = cap_rejections[id(slot)]

    merged: List[TimeEntry] = []
    for slot in slots:
        if slot.rejection is not None:
            rejection = slot.rejection
            if slot.is_new:
                rejection = rejection.model_copy(update={"entry_id": None})
            rejections.append(rejection)
        entry = slot.resolved()
        if entry is not None:
            merged.append(entry)
    merged.extend(restored)
    return ReconcileResult(merged=merged, rejections=rejections)


def as_edits(ledger: Iterable[TimeEntry]) -> List[ExistingEntryRef]:
    """Express a ledger as the edit list that would keep it exactly as it is."""
    return [
        ExistingEntryRef(
            id=entry.id,
            hours=entry.hours,
            minutes=entry.minutes,
            note=entry.note,
            occurred_on=entry.occurred_on,
            claimed_owner=entry.owner,
        )
        for entry in ledger
    ]


def _find_entry(persisted: Sequence[TimeEntry], entry_id: str) -> TimeEntry:
    for entry in persisted:
        if entry.id == entry_id:
            return entry
    raise NotFoundError("Time entry", entry_id)


def add_entry(
    persisted: Sequence[TimeEntry],
    new_entry: NewEntry,
    requester: Identity,
    **options,
) -> ReconcileResult:
    return reconcile(persisted, [*as_edits(persisted), new_entry], requester, **options)


def edit_entry(
    persisted: Sequence[TimeEntry],
    entry_id: str,
    requester: Identity,
    *,
    hours: Optional[int] = None,
    minutes: Optional[int] = None,
    note: Optional[str] = None,
    **options,
) -> ReconcileResult:
    """Owner-only update of a single entry."""
    target = _find_entry(persisted, entry_id)
    if target.owner != requester.user_id:
        raise AuthorizationError(entry_id, requester.user_id, "edit")
    edits: List[EntryEdit] = []
    for edit in as_edits(persisted):
        if edit.id == entry_id:
            edit = edit.model_copy(update={"hours": hours, "minutes": minutes, "note": note})
        edits.append(edit)
    return reconcile(persisted, edits, requester, **options)


def remove_entry(
    persisted: Sequence[TimeEntry],
    entry_id: str,
    requester: Identity,
    **options,
) -> ReconcileResult:
    """Owner-only deletion of a single entry."""
    target = _find_entry(persisted, entry_id)
    if target.owner != requester.user_id:
        raise AuthorizationError(entry_id, requester.user_id, "delete")
    edits = [edit for edit in as_edits(persisted) if edit.id != entry_id]
    return reconcile(persisted, edits, requester, **options)
