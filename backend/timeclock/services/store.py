"""Session store: the only component that writes sessions and breaks.

Each transition is one transaction. Write failures are rolled back and
surface as ``PersistenceFailed``; uniqueness conflicts are resolved into
either an idempotent replay or the matching validation error.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from timeclock.core.errors import AlreadyActive, BreakAlreadyOpen, NoOpenBreak, NotActive, PersistenceFailed
from timeclock.models.enums import IdempotencyScope, SessionStatus
from timeclock.models.idempotency import IdempotencyKey
from timeclock.models.time_session import TimeBreak, TimeSession
from timeclock.models.worker import Worker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdempotencyRequest:
    key: str
    scope: IdempotencyScope
    worker_id: int
    request_hash: str


@dataclass
class RangeSnapshot:
    """Sessions whose clock_in falls in a range, read in one transaction."""

    sessions: list[TimeSession] = field(default_factory=list)
    breaks_by_session: dict[int, list[TimeBreak]] = field(default_factory=dict)
    workers: list[Worker] = field(default_factory=list)
    active_worker_ids: set[int] = field(default_factory=set)


@dataclass
class ActiveSnapshot:
    session: TimeSession
    breaks: list[TimeBreak]
    worker: Optional[Worker] = None


class SessionStore(Protocol):
    def get_worker(self, worker_id: int) -> Optional[Worker]: ...

    def get_session(self, session_id: int) -> Optional[TimeSession]: ...

    def get_break(self, break_id: int) -> Optional[TimeBreak]: ...

    def get_active_session(self, worker_id: int) -> Optional[TimeSession]: ...

    def count_active_sessions(self) -> int: ...

    def get_open_break(self, session_id: int) -> Optional[TimeBreak]: ...

    def list_breaks(self, session_id: int) -> list[TimeBreak]: ...

    def find_idempotency(self, worker_id: int, scope: IdempotencyScope, key: str) -> Optional[IdempotencyKey]: ...

    def create_session(
        self, worker_id: int, clock_in: datetime, *, idempotency: Optional[IdempotencyRequest] = None
    ) -> TimeSession: ...

    def open_break(
        self, session_id: int, break_start: datetime, *, idempotency: Optional[IdempotencyRequest] = None
    ) -> TimeBreak: ...

    def close_break(
        self,
        break_id: int,
        break_end: datetime,
        duration_seconds: int,
        *,
        idempotency: Optional[IdempotencyRequest] = None,
    ) -> TimeBreak: ...

    def complete_session(
        self,
        session_id: int,
        clock_out: datetime,
        total_work_seconds: int,
        total_break_seconds: int,
        *,
        idempotency: Optional[IdempotencyRequest] = None,
    ) -> TimeSession: ...

    def active_snapshot(self, worker_id: Optional[int] = None) -> list[ActiveSnapshot]: ...

    def range_snapshot(
        self, start: datetime, end: datetime, *, worker_id: Optional[int] = None
    ) -> RangeSnapshot: ...


class SqlAlchemySessionStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        # Rows are handed back after their transaction has closed.
        session_factory.configure(expire_on_commit=False)
        self.session_factory = session_factory

    @contextmanager
    def _read(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def _write(self, operation: str) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("persistence_failed", extra={"outcome": operation}, exc_info=True)
            raise PersistenceFailed() from exc
        finally:
            db.close()

    # Reads

    def get_worker(self, worker_id: int) -> Optional[Worker]:
        with self._read() as db:
            return db.get(Worker, worker_id)

    def list_workers(self, *, include_inactive: bool = False) -> list[Worker]:
        with self._read() as db:
            query = select(Worker).order_by(Worker.display_name.asc(), Worker.id.asc())
            if not include_inactive:
                query = query.where(Worker.is_active.is_(True))
            return list(db.scalars(query))

    def get_session(self, session_id: int) -> Optional[TimeSession]:
        with self._read() as db:
            return db.get(TimeSession, session_id)

    def get_break(self, break_id: int) -> Optional[TimeBreak]:
        with self._read() as db:
            return db.get(TimeBreak, break_id)

    def get_active_session(self, worker_id: int) -> Optional[TimeSession]:
        with self._read() as db:
            return db.scalars(
                select(TimeSession).where(
                    TimeSession.worker_id == worker_id,
                    TimeSession.status == SessionStatus.ACTIVE,
                )
            ).first()

    def count_active_sessions(self) -> int:
        with self._read() as db:
            return db.scalar(
                select(func.count()).select_from(TimeSession).where(TimeSession.status == SessionStatus.ACTIVE)
            ) or 0

    def get_open_break(self, session_id: int) -> Optional[TimeBreak]:
        with self._read() as db:
            return db.scalars(
                select(TimeBreak).where(TimeBreak.session_id == session_id, TimeBreak.break_end.is_(None))
            ).first()

    def list_breaks(self, session_id: int) -> list[TimeBreak]:
        with self._read() as db:
            return list(
                db.scalars(
                    select(TimeBreak)
                    .where(TimeBreak.session_id == session_id)
                    .order_by(TimeBreak.break_start.asc(), TimeBreak.id.asc())
                )
            )

    def find_idempotency(self, worker_id: int, scope: IdempotencyScope, key: str) -> Optional[IdempotencyKey]:
        with self._read() as db:
            return db.scalars(
                select(IdempotencyKey).where(
                    IdempotencyKey.key == key,
                    IdempotencyKey.scope == scope.value,
                    IdempotencyKey.worker_id == worker_id,
                )
            ).first()

    def active_snapshot(self, worker_id: Optional[int] = None) -> list[ActiveSnapshot]:
        with self._read() as db:
            query = select(TimeSession).where(TimeSession.status == SessionStatus.ACTIVE)
            if worker_id is not None:
                query = query.where(TimeSession.worker_id == worker_id)
            sessions = list(db.scalars(query.order_by(TimeSession.clock_in.desc())))
            breaks = self._breaks_for(db, [s.id for s in sessions])
            worker_ids = {s.worker_id for s in sessions}
            workers = (
                {w.id: w for w in db.scalars(select(Worker).where(Worker.id.in_(worker_ids)))}
                if worker_ids
                else {}
            )
            return [
                ActiveSnapshot(session=s, breaks=breaks.get(s.id, []), worker=workers.get(s.worker_id))
                for s in sessions
            ]

    def range_snapshot(
        self, start: datetime, end: datetime, *, worker_id: Optional[int] = None
    ) -> RangeSnapshot:
        with self._read() as db:
            query = select(TimeSession).where(TimeSession.clock_in >= start, TimeSession.clock_in < end)
            active_query = select(TimeSession.worker_id).where(TimeSession.status == SessionStatus.ACTIVE)
            if worker_id is not None:
                query = query.where(TimeSession.worker_id == worker_id)
                active_query = active_query.where(TimeSession.worker_id == worker_id)
            sessions = list(db.scalars(query.order_by(TimeSession.clock_in.asc())))
            live_ids = [s.id for s in sessions if s.status == SessionStatus.ACTIVE]
            workers: list[Worker] = []
            if worker_id is None:
                workers = list(db.scalars(select(Worker).order_by(Worker.display_name.asc(), Worker.id.asc())))
            return RangeSnapshot(
                sessions=sessions,
                breaks_by_session=self._breaks_for(db, live_ids),
                workers=workers,
                active_worker_ids=set(db.scalars(active_query)),
            )

    def _breaks_for(self, db: Session, session_ids: list[int]) -> dict[int, list[TimeBreak]]:
        grouped: dict[int, list[TimeBreak]] = {session_id: [] for session_id in session_ids}
        if not session_ids:
            return grouped
        rows = db.scalars(
            select(TimeBreak)
            .where(TimeBreak.session_id.in_(session_ids))
            .order_by(TimeBreak.break_start.asc(), TimeBreak.id.asc())
        )
        for row in rows:
            grouped[row.session_id].append(row)
        return grouped

    # Writes

    def create_worker(self, *, display_name: str, account: Optional[str] = None) -> Worker:
        with self._write("create_worker") as db:
            worker = Worker(display_name=display_name, account=account, is_active=True)
            db.add(worker)
            db.flush()
            return worker

    def create_session(
        self, worker_id: int, clock_in: datetime, *, idempotency: Optional[IdempotencyRequest] = None
    ) -> TimeSession:
        def write(db: Session) -> TimeSession:
            session = TimeSession(
                worker_id=worker_id,
                clock_in=clock_in,
                status=SessionStatus.ACTIVE,
                total_work_seconds=0,
                total_break_seconds=0,
            )
            db.add(session)
            db.flush()
            return session

        def on_conflict() -> TimeSession:
            if self.get_active_session(worker_id) is not None:
                raise AlreadyActive(worker_id=worker_id)
            raise PersistenceFailed()

        return self._transition("create_session", write, idempotency, TimeSession, on_conflict)

    def open_break(
        self, session_id: int, break_start: datetime, *, idempotency: Optional[IdempotencyRequest] = None
    ) -> TimeBreak:
        def write(db: Session) -> TimeBreak:
            session = db.get(TimeSession, session_id)
            if session is None or session.status != SessionStatus.ACTIVE:
                raise NotActive(session_id=session_id)
            time_break = TimeBreak(session_id=session_id, break_start=break_start, duration_seconds=0)
            db.add(time_break)
            db.flush()
            return time_break

        def on_conflict() -> TimeBreak:
            raise BreakAlreadyOpen(session_id=session_id)

        return self._transition("open_break", write, idempotency, TimeBreak, on_conflict)

    def close_break(
        self,
        break_id: int,
        break_end: datetime,
        duration_seconds: int,
        *,
        idempotency: Optional[IdempotencyRequest] = None,
    ) -> TimeBreak:
        def write(db: Session) -> TimeBreak:
            result = db.execute(
                update(TimeBreak)
                .where(TimeBreak.id == break_id, TimeBreak.break_end.is_(None))
                .values(break_end=break_end, duration_seconds=duration_seconds)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NoOpenBreak(break_id=break_id)
            time_break = db.get(TimeBreak, break_id)
            return time_break

        def on_conflict() -> TimeBreak:
            raise NoOpenBreak(break_id=break_id)

        return self._transition("close_break", write, idempotency, TimeBreak, on_conflict)

    def complete_session(
        self,
        session_id: int,
        clock_out: datetime,
        total_work_seconds: int,
        total_break_seconds: int,
        *,
        idempotency: Optional[IdempotencyRequest] = None,
    ) -> TimeSession:
        def write(db: Session) -> TimeSession:
            result = db.execute(
                update(TimeSession)
                .where(TimeSession.id == session_id, TimeSession.status == SessionStatus.ACTIVE)
                .values(
                    clock_out=clock_out,
                    status=SessionStatus.COMPLETED,
                    total_work_seconds=total_work_seconds,
                    total_break_seconds=total_break_seconds,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotActive(session_id=session_id)
            session = db.get(TimeSession, session_id)
            return session

        def on_conflict() -> TimeSession:
            raise NotActive(session_id=session_id)

        return self._transition("complete_session", write, idempotency, TimeSession, on_conflict)

    def _transition(self, operation: str, write: Callable, idempotency, model, on_conflict: Callable):
        try:
            with self._write(operation) as db:
                record = write(db)
                if idempotency is not None:
                    db.add(
                        IdempotencyKey(
                            key=idempotency.key,
                            scope=idempotency.scope.value,
                            worker_id=idempotency.worker_id,
                            request_hash=idempotency.request_hash,
                            response_payload={"id": record.id},
                        )
                    )
                    db.flush()
                return record
        except IntegrityError:
            # A concurrent retry with the same key may have committed first.
            if idempotency is not None:
                existing = self.find_idempotency(idempotency.worker_id, idempotency.scope, idempotency.key)
                if existing is not None and existing.response_payload:
                    with self._read() as db:
                        replayed = db.get(model, existing.response_payload["id"])
                    if replayed is not None:
                        return replayed
            return on_conflict()
