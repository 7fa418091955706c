from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .config import settings

DATABASE_URL = f"sqlite:///{settings.sqlite_path}" if settings.storage_backend == "sqlite" else None
if settings.storage_backend != "sqlite":
    raise NotImplementedError("Only sqlite backend is implemented in this MVP")

# The busy timeout is the single end-to-end timeout for persistence calls.
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False, "timeout": settings.persistence_timeout},
    future=True,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
