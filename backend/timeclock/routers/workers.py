"""Workers router: the people who can clock in."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status

from timeclock.core.deps import get_store
from timeclock.core.errors import WorkerNotFound
from timeclock.schemas.worker import WorkerCreate, WorkerRead
from timeclock.services.store import SqlAlchemySessionStore

router = APIRouter(prefix="/api/workers", tags=["workers"])


@router.get("", response_model=List[WorkerRead])
def list_workers(
    include_inactive: bool = Query(False),
    store: SqlAlchemySessionStore = Depends(get_store),
) -> List[WorkerRead]:
    return [WorkerRead.model_validate(w) for w in store.list_workers(include_inactive=include_inactive)]


@router.post("", response_model=WorkerRead, status_code=status.HTTP_201_CREATED)
def create_worker(
    payload: WorkerCreate,
    store: SqlAlchemySessionStore = Depends(get_store),
) -> WorkerRead:
    worker = store.create_worker(display_name=payload.display_name.strip(), account=payload.account)
    return WorkerRead.model_validate(worker)


@router.get("/{worker_id}", response_model=WorkerRead)
def get_worker(
    worker_id: int,
    store: SqlAlchemySessionStore = Depends(get_store),
) -> WorkerRead:
    worker = store.get_worker(worker_id)
    if worker is None:
        raise WorkerNotFound(worker_id=worker_id)
    return WorkerRead.model_validate(worker)
