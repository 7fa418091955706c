from __future__ import annotations

import datetime as dt

from fastapi.testclient import TestClient

from taskledger.utils import today

ALICE = {"X-User-Id": "alice", "X-User-Name": "Alice"}
BOB = {"X-User-Id": "bob", "X-User-Name": "Bob"}


def _create_hierarchy(client: TestClient) -> dict:
    task = client.post("/tasks", json={"board_id": 7, "list_id": 3, "title": "Launch"}, headers=ALICE)
    assert task.status_code == 201
    task_id = task.json()["id"]
    subtask = client.post(f"/tasks/{task_id}/subtasks", json={"title": "Design"}, headers=ALICE)
    assert subtask.status_code == 201
    subtask_id = subtask.json()["id"]
    nano = client.post(f"/subtasks/{subtask_id}/nanos", json={"title": "Sketch"}, headers=ALICE)
    assert nano.status_code == 201
    return {"task": task_id, "subtask": subtask_id, "nano": nano.json()["id"]}


def test_healthz_needs_no_identity(client: TestClient):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_time_tracking_workflow(client: TestClient):
    ids = _create_hierarchy(client)
    day = today().isoformat()

    response = client.put(
        f"/tasks/{ids['task']}/ledgers/logged",
        json={"entries": [{"hours": 5, "minutes": 0, "reason": "Planning", "date": day, "user": "bob"}]},
        headers=ALICE,
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["applied"] is True
    assert body["total_minutes"] == 300
    [alice_entry] = body["entries"]
    assert alice_entry["owner"] == "alice"
    assert alice_entry["owner_display_name"] == "Alice"
    assert alice_entry["note"] == "Planning"

    # Bob submits a ledger without Alice's entry: it is restored and reported.
    response = client.put(
        f"/tasks/{ids['task']}/ledgers/logged",
        json={"entries": [{"hours": 1, "minutes": 30, "date": day}]},
        headers=BOB,
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert sorted(entry["owner"] for entry in body["entries"]) == ["alice", "bob"]
    assert body["total_minutes"] == 390
    [warning] = body["warnings"]
    assert warning["code"] == "foreign_delete"
    assert warning["severity"] == "advisory"
    assert warning["entry_id"] == alice_entry["id"]

    # Alice may not go above 24 hours on one day.
    response = client.post(
        f"/tasks/{ids['task']}/ledgers/logged/entries",
        json={"hours": 20, "date": day},
        headers=ALICE,
    )
    assert response.status_code == 400
    body = response.json()
    assert body["rejections"][0]["code"] == "daily_cap"
    assert "already logged 5h 0m" in body["detail"]
    assert "Maximum you can add: 19h 0m" in body["detail"]

    detail = client.get(f"/tasks/{ids['task']}", headers=ALICE).json()
    assert detail["totals"]["logged"] == 390
    assert detail["ledger_version"] == 2


def test_single_entry_routes(client: TestClient):
    ids = _create_hierarchy(client)

    created = client.post(f"/nanos/{ids['nano']}/ledgers/estimation/entries", json={"hours": 2}, headers=ALICE)
    assert created.status_code == 200, created.text
    entry_id = created.json()["entries"][0]["id"]
    assert created.json()["entries"][0]["occurred_on"] == today().isoformat()

    foreign = client.patch(
        f"/nanos/{ids['nano']}/ledgers/estimation/entries/{entry_id}", json={"hours": 9}, headers=BOB
    )
    assert foreign.status_code == 200
    assert foreign.json()["applied"] is False
    assert foreign.json()["warnings"][0]["code"] == "not_owner"
    assert foreign.json()["warnings"][0]["message"] == "You can only edit your own time entries"

    edited = client.patch(
        f"/nanos/{ids['nano']}/ledgers/estimation/entries/{entry_id}", json={"minutes": 30}, headers=ALICE
    )
    assert edited.json()["entries"][0]["minutes_reported"] == 150

    missing = client.delete(f"/nanos/{ids['nano']}/ledgers/estimation/entries/nope", headers=ALICE)
    assert missing.status_code == 404

    removed = client.delete(f"/nanos/{ids['nano']}/ledgers/estimation/entries/{entry_id}", headers=ALICE)
    assert removed.status_code == 200
    assert removed.json()["entries"] == []


def test_future_date_is_rejected(client: TestClient):
    ids = _create_hierarchy(client)
    tomorrow = (today() + dt.timedelta(days=1)).isoformat()

    response = client.post(
        f"/subtasks/{ids['subtask']}/ledgers/logged/entries",
        json={"hours": 1, "date": tomorrow},
        headers=ALICE,
    )

    assert response.status_code == 400
    assert response.json()["rejections"][0]["code"] == "future_date"


def test_identity_is_required_for_mutations(client: TestClient):
    response = client.post("/tasks", json={"board_id": 1, "title": "Anonymous"})

    assert response.status_code == 401
    assert response.json() == {"detail": "Missing caller identity"}


def test_unknown_container_kind_and_ids(client: TestClient):
    ids = _create_hierarchy(client)

    assert client.get("/boards-x/1", headers=ALICE).status_code == 404
    assert client.get("/tasks/999999", headers=ALICE).status_code == 404
    assert client.put(f"/tasks/{ids['task']}/ledgers/overtime", json={"entries": []}, headers=ALICE).status_code == 404
    assert client.post("/tasks/999999/subtasks", json={"title": "Orphan"}, headers=ALICE).status_code == 404
    assert client.get(f"/nanos/{ids['nano']}/stats", headers=ALICE).status_code == 404


def test_status_change_updates_rollups_and_broadcasts(client: TestClient, scheduler):
    ids = _create_hierarchy(client)

    response = client.patch(f"/nanos/{ids['nano']}/status", json={"status": "done"}, headers=ALICE)
    assert response.status_code == 200
    assert response.json()["completion_hook_called"] is True
    assert scheduler.calls == [("nano", ids["nano"], "done")]

    stats = client.get(f"/subtasks/{ids['subtask']}/stats", headers=ALICE).json()
    assert (stats["child_total"], stats["child_completed"]) == (1, 1)
    stats = client.get(f"/tasks/{ids['task']}/stats", headers=ALICE).json()
    assert (stats["child_total"], stats["child_completed"]) == (1, 0)
    assert (stats["grandchild_total"], stats["grandchild_completed"]) == (1, 1)

    events = client.get("/boards/7/events", headers=ALICE).json()
    topics = [event["topic"] for event in events]
    assert topics.count("board-7:created") == 3
    assert topics[-1] == "board-7:updated"
    assert events[-1]["payload"]["container"]["status"] == "done"


def test_cached_detail_is_invalidated_by_ledger_change(client: TestClient):
    ids = _create_hierarchy(client)

    before = client.get(f"/subtasks/{ids['subtask']}", headers=ALICE).json()
    assert before["totals"]["billed"] == 0

    client.post(f"/subtasks/{ids['subtask']}/ledgers/billed/entries", json={"hours": 1}, headers=ALICE)

    after = client.get(f"/subtasks/{ids['subtask']}", headers=ALICE).json()
    assert after["totals"]["billed"] == 60


def test_nano_change_invalidates_cached_parent_task(client: TestClient):
    ids = _create_hierarchy(client)
    assert client.get(f"/tasks/{ids['task']}", headers=ALICE).json()["stats"]["grandchild_completed"] == 0

    client.patch(f"/nanos/{ids['nano']}/status", json={"status": "done"}, headers=ALICE)

    assert client.get(f"/tasks/{ids['task']}", headers=ALICE).json()["stats"]["grandchild_completed"] == 1


def test_delete_and_reorder(client: TestClient):
    ids = _create_hierarchy(client)
    second = client.post(f"/subtasks/{ids['subtask']}/nanos", json={"title": "Review"}, headers=ALICE).json()["id"]

    bad = client.put(f"/subtasks/{ids['subtask']}/order", json={"orderedIds": [second]}, headers=ALICE)
    assert bad.status_code == 400

    reordered = client.put(f"/subtasks/{ids['subtask']}/order", json={"orderedIds": [second, ids["nano"]]}, headers=ALICE)
    assert reordered.status_code == 200
    assert reordered.json() == [second, ids["nano"]]

    assert client.delete(f"/nanos/{ids['nano']}", headers=ALICE).status_code == 204
    assert client.get(f"/nanos/{ids['nano']}", headers=ALICE).status_code == 404
    stats = client.get(f"/subtasks/{ids['subtask']}/stats", headers=ALICE).json()
    assert stats["child_total"] == 1

    assert client.delete(f"/tasks/{ids['task']}", headers=ALICE).status_code == 204
    assert client.get(f"/subtasks/{ids['subtask']}", headers=ALICE).status_code == 404

    topics = [event["topic"] for event in client.get("/boards/7/events", headers=ALICE).json()]
    assert "board-7:reordered" in topics
    assert topics[-1] == "board-7:deleted"


def test_cascade_delete_drops_cached_descendants(client: TestClient):
    ids = _create_hierarchy(client)
    assert client.get(f"/subtasks/{ids['subtask']}", headers=ALICE).status_code == 200
    assert client.get(f"/nanos/{ids['nano']}", headers=ALICE).status_code == 200

    assert client.delete(f"/tasks/{ids['task']}", headers=ALICE).status_code == 204

    assert client.get(f"/subtasks/{ids['subtask']}", headers=ALICE).status_code == 404
    assert client.get(f"/nanos/{ids['nano']}", headers=ALICE).status_code == 404


def test_deleting_a_subtask_drops_its_cached_nanos(client: TestClient):
    ids = _create_hierarchy(client)
    assert client.get(f"/nanos/{ids['nano']}", headers=ALICE).status_code == 200

    assert client.delete(f"/subtasks/{ids['subtask']}", headers=ALICE).status_code == 204

    assert client.get(f"/nanos/{ids['nano']}", headers=ALICE).status_code == 404
    assert client.get(f"/tasks/{ids['task']}/stats", headers=ALICE).json()["grandchild_total"] == 0
