from __future__ import annotations

import datetime as dt

from taskledger.ledger import ContainerRecord, ExistingEntryRef, NewEntry, Rejection, TimeEntry
from taskledger.schemas import ContainerResponse, EntryPayload, LedgerUpdateRequest, RejectionResponse


def test_payload_without_id_becomes_new_entry():
    payload = EntryPayload.model_validate({"hours": 2, "description": "Review", "date": "2024-05-10", "user": "mallory"})

    edit = payload.to_edit()

    assert isinstance(edit, NewEntry)
    assert edit.hours == 2
    assert edit.minutes == 0
    assert edit.note == "Review"
    assert edit.occurred_on == dt.date(2024, 5, 10)
    assert edit.claimed_owner == "mallory"


def test_payload_with_id_references_existing_entry():
    payload = EntryPayload.model_validate({"id": " e-1 ", "minutes": 15, "note": "x", "reason": "ignored"})

    edit = payload.to_edit()

    assert isinstance(edit, ExistingEntryRef)
    assert edit.id == "e-1"
    assert edit.hours is None
    assert edit.minutes == 15
    assert edit.note == "x"


def test_blank_id_is_treated_as_new():
    request = LedgerUpdateRequest.model_validate({"entries": [{"id": "", "hours": 1}]})

    assert isinstance(request.entries[0].to_edit(), NewEntry)


def test_rejection_response_carries_severity():
    hard = RejectionResponse.from_rejection(Rejection(code="daily_cap", message="too much"))
    soft = RejectionResponse.from_rejection(Rejection(code="foreign_delete", message="kept", entry_id="e-1"))

    assert hard.severity == "hard"
    assert soft.severity == "advisory"
    assert soft.entry_id == "e-1"


def test_container_response_sums_each_ledger():
    entry = TimeEntry(id="e-1", owner="alice", hours=1, minutes=15, occurred_on=dt.date(2024, 5, 10))
    record = ContainerRecord(
        level="subtask",
        id=4,
        board_id=7,
        task_id=2,
        ledgers={"logged": [entry, entry.model_copy(update={"id": "e-2"})], "billed": []},
    )

    response = ContainerResponse.from_record(record)

    assert response.totals == {"logged": 150, "billed": 0}
    assert response.ledgers["logged"][1].id == "e-2"
    assert response.stats is None
