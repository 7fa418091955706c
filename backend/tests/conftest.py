from __future__ import annotations

import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import Dict, Generator

os.environ.setdefault("TL_SQLITE_PATH", str(Path(tempfile.mkdtemp()) / "taskledger.db"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from taskledger import models
from taskledger.channels import BoardBroadcaster, LocalCache
from taskledger.database import get_db
from taskledger.ledger import Identity
from taskledger.main import app
from taskledger.store import SqlAlchemyStore


class RecordingScheduler:
    def __init__(self) -> None:
        self.calls: list[tuple[str, int, str]] = []

    def on_completed(self, level: str, container_id: int, status: str) -> None:
        self.calls.append((level, container_id, status))


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture(scope="function")
def client(session: Session, scheduler: RecordingScheduler) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.cache = LocalCache(ttl_seconds=120)
    app.state.broadcaster = BoardBroadcaster()
    app.state.scheduler = scheduler
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def store(session: Session) -> SqlAlchemyStore:
    return SqlAlchemyStore(session)


@pytest.fixture()
def hierarchy(session: Session) -> Dict[str, int]:
    """One task with two subtasks; the first subtask holds two nanos."""
    task = models.Task(board_id=7, list_id=3, title="Launch")
    session.add(task)
    session.commit()
    first = models.Subtask(task_id=task.id, board_id=7, title="Design", order=0)
    second = models.Subtask(task_id=task.id, board_id=7, title="Build", order=1)
    session.add_all([first, second])
    session.commit()
    nano_a = models.NanoSubtask(subtask_id=first.id, task_id=task.id, board_id=7, title="Sketch", order=0)
    nano_b = models.NanoSubtask(subtask_id=first.id, task_id=task.id, board_id=7, title="Review", order=1)
    session.add_all([nano_a, nano_b])
    session.commit()
    return {
        "task": task.id,
        "subtask": first.id,
        "other_subtask": second.id,
        "nano": nano_a.id,
        "other_nano": nano_b.id,
    }


@pytest.fixture()
def alice() -> Identity:
    return Identity(user_id="alice", display_name="Alice")


@pytest.fixture()
def bob() -> Identity:
    return Identity(user_id="bob", display_name="Bob")


@pytest.fixture()
def sample_day() -> dt.date:
    return dt.date(2024, 5, 15)
