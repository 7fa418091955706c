from __future__ import annotations

import logging
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import models
from .channels import BoardBroadcaster, LocalCache, LoggingCompletionScheduler
from .config import settings
from .database import engine, get_db
from .errors import ConcurrentModificationError, HardValidationError, NotFoundError
from .ledger import Identity
from .middleware import IdentityMiddleware
from .propagator import ChangePropagator, LedgerOutcome
from .schemas import (
    BroadcastEventResponse,
    ChildCreateRequest,
    ContainerResponse,
    EntryCreateRequest,
    EntryUpdateRequest,
    LedgerResponse,
    LedgerUpdateRequest,
    RejectionResponse,
    ReorderRequest,
    StatsResponse,
    StatusResponse,
    StatusUpdateRequest,
    TaskCreateRequest,
    TimeEntryResponse,
    ValidationErrorResponse,
)
from .services import create_nano, create_subtask, create_task, delete_container, reorder_children
from .store import SqlAlchemyStore

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

LEVEL_PATHS = {"tasks": "task", "subtasks": "subtask", "nanos": "nano"}

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)
app.state.cache = LocalCache(settings.cache_ttl_seconds)
app.state.broadcaster = BoardBroadcaster(settings.broadcast_buffer_size)
app.state.scheduler = LoggingCompletionScheduler()
app.add_middleware(IdentityMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:5173", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.exception_handler(HardValidationError)
async def _hard_validation_handler(request: Request, exc: HardValidationError) -> JSONResponse:
    body = ValidationErrorResponse(
        detail=str(exc),
        rejections=[RejectionResponse.from_rejection(item) for item in exc.rejections],
    )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())


@app.exception_handler(NotFoundError)
async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ConcurrentModificationError)
async def _conflict_handler(request: Request, exc: ConcurrentModificationError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


def get_identity(request: Request) -> Identity:
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing caller identity")
    return identity


def get_propagator(request: Request, db: Session = Depends(get_db)) -> ChangePropagator:
    state = request.app.state
    return ChangePropagator(SqlAlchemyStore(db), state.cache, state.broadcaster, state.scheduler)


def _level(level_path: str) -> str:
    level = LEVEL_PATHS.get(level_path)
    if level is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown container type: {level_path}")
    return level


def _ledger_response(outcome: LedgerOutcome) -> LedgerResponse:
    return LedgerResponse(
        level=outcome.level,
        container_id=outcome.container_id,
        kind=outcome.kind,
        applied=outcome.applied,
        ledger_version=outcome.ledger_version,
        total_minutes=sum(entry.minutes_reported for entry in outcome.entries),
        entries=[TimeEntryResponse.from_entry(entry) for entry in outcome.entries],
        warnings=[RejectionResponse.from_rejection(item) for item in outcome.warnings],
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/tasks", response_model=ContainerResponse, status_code=status.HTTP_201_CREATED)
def task_create(
    payload: TaskCreateRequest,
    db: Session = Depends(get_db),
    propagator: ChangePropagator = Depends(get_propagator),
) -> ContainerResponse:
    return ContainerResponse.from_record(create_task(db, propagator, payload))


@app.post("/tasks/{task_id}/subtasks", response_model=ContainerResponse, status_code=status.HTTP_201_CREATED)
def subtask_create(
    task_id: int,
    payload: ChildCreateRequest,
    db: Session = Depends(get_db),
    propagator: ChangePropagator = Depends(get_propagator),
) -> ContainerResponse:
    return ContainerResponse.from_record(create_subtask(db, propagator, task_id, payload))


@app.post("/subtasks/{subtask_id}/nanos", response_model=ContainerResponse, status_code=status.HTTP_201_CREATED)
def nano_create(
    subtask_id: int,
    payload: ChildCreateRequest,
    db: Session = Depends(get_db),
    propagator: ChangePropagator = Depends(get_propagator),
) -> ContainerResponse:
    return ContainerResponse.from_record(create_nano(db, propagator, subtask_id, payload))


@app.get("/boards/{board_id}/events", response_model=List[BroadcastEventResponse])
def board_events(board_id: int, request: Request) -> List[BroadcastEventResponse]:
    broadcaster: BoardBroadcaster = request.app.state.broadcaster
    return [BroadcastEventResponse(topic=topic, payload=payload) for topic, payload in broadcaster.recent(board_id)]


@app.get("/{level_path}/{container_id}", response_model=ContainerResponse)
def container_detail(
    level_path: str,
    container_id: int,
    request: Request,
    propagator: ChangePropagator = Depends(get_propagator),
) -> ContainerResponse:
    level = _level(level_path)
    cache: LocalCache = request.app.state.cache
    return cache.get_or_load(
        f"{level}:{container_id}:view",
        lambda: ContainerResponse.from_record(propagator.store.load_container(level, container_id)),
    )


@app.get("/{level_path}/{container_id}/stats", response_model=StatsResponse)
def container_stats(
    level_path: str,
    container_id: int,
    refresh: bool = False,
    propagator: ChangePropagator = Depends(get_propagator),
) -> StatsResponse:
    level = _level(level_path)
    if level == "nano":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Nano-subtasks have no rollup")
    snapshot = propagator.store.load_container(level, container_id).stats
    if refresh:
        snapshot = propagator.aggregator.recompute(container_id, level)
    return StatsResponse.from_snapshot(snapshot)


@app.delete("/{level_path}/{container_id}", status_code=status.HTTP_204_NO_CONTENT)
def container_delete(
    level_path: str,
    container_id: int,
    db: Session = Depends(get_db),
    propagator: ChangePropagator = Depends(get_propagator),
) -> Response:
    delete_container(db, propagator, _level(level_path), container_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put("/{level_path}/{container_id}/order", response_model=List[int])
def container_reorder(
    level_path: str,
    container_id: int,
    payload: ReorderRequest,
    db: Session = Depends(get_db),
    propagator: ChangePropagator = Depends(get_propagator),
) -> List[int]:
    return reorder_children(db, propagator, _level(level_path), container_id, payload.ordered_ids)


@app.patch("/{level_path}/{container_id}/status", response_model=StatusResponse)
def container_status(
    level_path: str,
    container_id: int,
    payload: StatusUpdateRequest,
    propagator: ChangePropagator = Depends(get_propagator),
) -> StatusResponse:
    outcome = propagator.change_status(_level(level_path), container_id, payload.status)
    return StatusResponse(**outcome.model_dump())


@app.put("/{level_path}/{container_id}/ledgers/{kind}", response_model=LedgerResponse)
def ledger_replace(
    level_path: str,
    container_id: int,
    kind: str,
    payload: LedgerUpdateRequest,
    identity: Identity = Depends(get_identity),
    propagator: ChangePropagator = Depends(get_propagator),
) -> LedgerResponse:
    edits = [entry.to_edit() for entry in payload.entries]
    outcome = propagator.apply_ledger_edits(_level(level_path), container_id, kind, edits, identity)
    return _ledger_response(outcome)


@app.post("/{level_path}/{container_id}/ledgers/{kind}/entries", response_model=LedgerResponse)
def ledger_entry_add(
    level_path: str,
    container_id: int,
    kind: str,
    payload: EntryCreateRequest,
    identity: Identity = Depends(get_identity),
    propagator: ChangePropagator = Depends(get_propagator),
) -> LedgerResponse:
    outcome = propagator.add_entry(_level(level_path), container_id, kind, payload.to_edit(), identity)
    return _ledger_response(outcome)


@app.patch("/{level_path}/{container_id}/ledgers/{kind}/entries/{entry_id}", response_model=LedgerResponse)
def ledger_entry_update(
    level_path: str,
    container_id: int,
    kind: str,
    entry_id: str,
    payload: EntryUpdateRequest,
    identity: Identity = Depends(get_identity),
    propagator: ChangePropagator = Depends(get_propagator),
) -> LedgerResponse:
    outcome = propagator.edit_entry(
        _level(level_path),
        container_id,
        kind,
        entry_id,
        identity,
        hours=payload.hours,
        minutes=payload.minutes,
        note=payload.note,
    )
    return _ledger_response(outcome)


@app.delete("/{level_path}/{container_id}/ledgers/{kind}/entries/{entry_id}", response_model=LedgerResponse)
def ledger_entry_delete(
    level_path: str,
    container_id: int,
    kind: str,
    entry_id: str,
    identity: Identity = Depends(get_identity),
    propagator: ChangePropagator = Depends(get_propagator),
) -> LedgerResponse:
    outcome = propagator.delete_entry(_level(level_path), container_id, kind, entry_id, identity)
    return _ledger_response(outcome)
