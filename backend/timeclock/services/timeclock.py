"""Work session state machine: clock-in, breaks, clock-out.

A worker's state is never held in memory. It is derived from the store
(active session, open break) plus the capture coordinator's pending set,
so a failed write always leaves the visible state where it was.

Transitions for one worker are serialized by a per-worker lock; workers
do not block each other.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from timeclock.core.clock import Clock, SystemClock
from timeclock.core.errors import (
    AlreadyActive,
    BreakAlreadyOpen,
    BreakInProgress,
    BreakNotFound,
    IdempotencyKeyMismatch,
    NoOpenBreak,
    NotActive,
    PersistenceFailed,
    SessionNotFound,
    TimeClockError,
    WorkerNotFound,
)
from timeclock.core.observability import record_transition, update_active_sessions
from timeclock.models.enums import IdempotencyScope, SessionStatus, WorkerState
from timeclock.models.time_session import TimeBreak, TimeSession
from timeclock.models.worker import Worker
from timeclock.services.capture import CaptureCoordinator
from timeclock.services.elapsed import LiveTotals, live_totals, open_break
from timeclock.services.store import IdempotencyRequest, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class WorkerStatus:
    worker_id: int
    state: WorkerState
    session: Optional[TimeSession] = None
    open_break: Optional[TimeBreak] = None
    totals: Optional[LiveTotals] = None
    display_name: Optional[str] = None


def _hash_payload(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class TimeClockService:
    def __init__(
        self,
        store: SessionStore,
        coordinator: CaptureCoordinator,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.coordinator = coordinator
        self.clock = clock or SystemClock()
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _worker_lock(self, worker_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(worker_id)
            if lock is None:
                lock = self._locks[worker_id] = threading.Lock()
            return lock

    def _idempotency(
        self,
        key: Optional[str],
        scope: IdempotencyScope,
        worker_id: int,
        payload: dict[str, Any],
    ) -> Optional[IdempotencyRequest]:
        if not key:
            return None
        return IdempotencyRequest(
            key=key,
            scope=scope,
            worker_id=worker_id,
            request_hash=_hash_payload({"scope": scope.value, **payload}),
        )

    def _replayed_id(self, request: Optional[IdempotencyRequest]) -> Optional[int]:
        if request is None:
            return None
        existing = self.store.find_idempotency(request.worker_id, request.scope, request.key)
        if existing is None:
            return None
        if existing.request_hash != request.request_hash:
            raise IdempotencyKeyMismatch(worker_id=request.worker_id)
        if not existing.response_payload:
            return None
        return int(existing.response_payload["id"])

    def _require_session(self, session_id: int) -> TimeSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id=session_id)
        return session

    def _require_break(self, break_id: int) -> TimeBreak:
        time_break = self.store.get_break(break_id)
        if time_break is None:
            raise BreakNotFound(break_id=break_id)
        return time_break

    def _session_persisted(self, worker_id: int) -> bool:
        """Whether an active session exists after a clock-in write reported failure.

        The lock is held and no session existed before the write, so an active
        session here belongs to this attempt. An unreadable store counts as none.
        """
        try:
            return self.store.get_active_session(worker_id) is not None
        except SQLAlchemyError:
            logger.warning("clock_in_recheck_failed", extra={"worker_id": worker_id}, exc_info=True)
            return False

    def _refresh_active_gauge(self) -> None:
        try:
            update_active_sessions(self.store.count_active_sessions())
        except SQLAlchemyError:
            logger.warning("active_sessions_gauge_failed", exc_info=True)

    def _fail(self, transition: str, exc: TimeClockError, **extra: Any) -> None:
        record_transition(transition, exc.code)
        logger.info(f"{transition}_rejected", extra={"outcome": exc.code, **extra})

    # Transitions

    def clock_in(self, worker_id: int, *, idempotency_key: Optional[str] = None) -> TimeSession:
        """Start a session for *worker_id* once the capture handshake succeeds."""
        worker = self.store.get_worker(worker_id)
        if worker is None or not worker.is_active:
            raise WorkerNotFound(worker_id=worker_id)

        request = self._idempotency(idempotency_key, IdempotencyScope.CLOCK_IN, worker_id, {"worker_id": worker_id})
        replayed = self._replayed_id(request)
        if replayed is not None:
            return self._require_session(replayed)

        if self.coordinator.is_pending(worker_id):
            exc = AlreadyActive("A clock-in is already waiting on screen capture", worker_id=worker_id)
            self._fail("clock_in", exc, worker_id=worker_id)
            raise exc

        with self._worker_lock(worker_id):
            replayed = self._replayed_id(request)
            if replayed is not None:
                return self._require_session(replayed)

            if self.store.get_active_session(worker_id) is not None:
                exc = AlreadyActive(worker_id=worker_id)
                self._fail("clock_in", exc, worker_id=worker_id)
                raise exc

            try:
                self.coordinator.acquire(worker_id)
            except TimeClockError as exc:
                self._fail("clock_in", exc, worker_id=worker_id)
                raise

            try:
                session = self.store.create_session(worker_id, self.clock.now(), idempotency=request)
            except TimeClockError as exc:
                # The commit may have landed even though the write reported failure.
                if isinstance(exc, PersistenceFailed) and self._session_persisted(worker_id):
                    logger.warning(
                        "clock_in_commit_ambiguous",
                        extra={"worker_id": worker_id, "outcome": exc.code},
                    )
                else:
                    self.coordinator.release(worker_id)
                self._fail("clock_in", exc, worker_id=worker_id)
                raise

        record_transition("clock_in", "ok")
        self._refresh_active_gauge()
        logger.info("clock_in", extra={"worker_id": worker_id, "session_id": session.id})
        return session

    def start_break(self, session_id: int, *, idempotency_key: Optional[str] = None) -> TimeBreak:
        session = self._require_session(session_id)
        worker_id = session.worker_id
        request = self._idempotency(
            idempotency_key, IdempotencyScope.START_BREAK, worker_id, {"session_id": session_id}
        )

        with self._worker_lock(worker_id):
            replayed = self._replayed_id(request)
            if replayed is not None:
                return self._require_break(replayed)

            session = self._require_session(session_id)
            try:
                if session.status != SessionStatus.ACTIVE:
                    raise NotActive(session_id=session_id)
                if self.store.get_open_break(session_id) is not None:
                    raise BreakAlreadyOpen(session_id=session_id)
                time_break = self.store.open_break(session_id, self.clock.now(), idempotency=request)
            except TimeClockError as exc:
                self._fail("start_break", exc, worker_id=worker_id, session_id=session_id)
                raise

        record_transition("start_break", "ok")
        logger.info(
            "break_started",
            extra={"worker_id": worker_id, "session_id": session_id, "break_id": time_break.id},
        )
        return time_break

    def end_break(self, break_id: int, *, idempotency_key: Optional[str] = None) -> TimeBreak:
        time_break = self._require_break(break_id)
        session = self._require_session(time_break.session_id)
        worker_id = session.worker_id
        request = self._idempotency(idempotency_key, IdempotencyScope.END_BREAK, worker_id, {"break_id": break_id})

        with self._worker_lock(worker_id):
            replayed = self._replayed_id(request)
            if replayed is not None:
                return self._require_break(replayed)

            time_break = self._require_break(break_id)
            try:
                if time_break.break_end is not None:
                    raise NoOpenBreak(break_id=break_id)
                now = self.clock.now()
                duration = max(int((now - time_break.break_start).total_seconds()), 0)
                time_break = self.store.close_break(break_id, now, duration, idempotency=request)
            except TimeClockError as exc:
                self._fail("end_break", exc, worker_id=worker_id, break_id=break_id)
                raise

        record_transition("end_break", "ok")
        logger.info(
            "break_ended",
            extra={"worker_id": worker_id, "session_id": session.id, "break_id": break_id},
        )
        return time_break

    def end_current_break(self, session_id: int, *, idempotency_key: Optional[str] = None) -> TimeBreak:
        """End whichever break is open on *session_id*.

        A retried key replays the break it ended the first time, even though
        that break is no longer open.
        """
        session = self._require_session(session_id)
        if idempotency_key:
            existing = self.store.find_idempotency(session.worker_id, IdempotencyScope.END_BREAK, idempotency_key)
            if existing is not None and existing.response_payload:
                recorded = self._require_break(int(existing.response_payload["id"]))
                if recorded.session_id != session_id:
                    raise IdempotencyKeyMismatch(worker_id=session.worker_id)
                return self.end_break(recorded.id, idempotency_key=idempotency_key)

        current = self.store.get_open_break(session_id)
        if current is None:
            exc = NoOpenBreak(session_id=session_id)
            self._fail("end_break", exc, session_id=session_id)
            raise exc
        return self.end_break(current.id, idempotency_key=idempotency_key)

    def clock_out(self, session_id: int, *, idempotency_key: Optional[str] = None) -> TimeSession:
        """Complete *session_id* with final totals, then release capture.

        Clocking out during a break is refused with ``BreakInProgress``; the
        break has to be ended first.
        """
        session = self._require_session(session_id)
        worker_id = session.worker_id
        request = self._idempotency(idempotency_key, IdempotencyScope.CLOCK_OUT, worker_id, {"session_id": session_id})

        with self._worker_lock(worker_id):
            replayed = self._replayed_id(request)
            if replayed is not None:
                return self._require_session(replayed)

            session = self._require_session(session_id)
            try:
                if session.status != SessionStatus.ACTIVE:
                    raise NotActive(session_id=session_id)
                breaks = self.store.list_breaks(session_id)
                if open_break(breaks) is not None:
                    raise BreakInProgress(session_id=session_id)
                now = self.clock.now()
                totals = live_totals(session, breaks, now)
                session = self.store.complete_session(
                    session_id,
                    now,
                    totals.work_seconds,
                    totals.break_seconds,
                    idempotency=request,
                )
            except TimeClockError as exc:
                self._fail("clock_out", exc, worker_id=worker_id, session_id=session_id)
                raise

            self.coordinator.release(worker_id)

        record_transition("clock_out", "ok")
        self._refresh_active_gauge()
        logger.info("clock_out", extra={"worker_id": worker_id, "session_id": session_id})
        return session

    def cancel_clock_in(self, worker_id: int) -> bool:
        cancelled = self.coordinator.cancel(worker_id)
        if cancelled:
            logger.info("clock_in_cancelled", extra={"worker_id": worker_id})
        return cancelled

    # Queries

    def get_active_session(self, worker_id: int) -> Optional[TimeSession]:
        return self.store.get_active_session(worker_id)

    def list_breaks(self, session_id: int) -> list[TimeBreak]:
        self._require_session(session_id)
        return self.store.list_breaks(session_id)

    def worker_status(self, worker_id: int) -> WorkerStatus:
        worker = self.store.get_worker(worker_id)
        if worker is None:
            raise WorkerNotFound(worker_id=worker_id)
        if self.coordinator.is_pending(worker_id):
            return WorkerStatus(worker_id=worker_id, state=WorkerState.PENDING_CAPTURE, display_name=worker.display_name)

        snapshots = self.store.active_snapshot(worker_id)
        if not snapshots:
            return WorkerStatus(worker_id=worker_id, state=WorkerState.NOT_CLOCKED_IN, display_name=worker.display_name)
        snapshot = snapshots[0]
        return self._status_from(snapshot.session, snapshot.breaks, worker)

    def list_active_sessions(self) -> list[WorkerStatus]:
        snapshots = self.store.active_snapshot()
        update_active_sessions(len(snapshots))
        return [self._status_from(s.session, s.breaks, s.worker) for s in snapshots]

    def _status_from(self, session: TimeSession, breaks: list[TimeBreak], worker: Optional[Worker]) -> WorkerStatus:
        current = open_break(breaks)
        return WorkerStatus(
            worker_id=session.worker_id,
            state=WorkerState.ON_BREAK if current is not None else WorkerState.ACTIVE,
            session=session,
            open_break=current,
            totals=live_totals(session, breaks, self.clock.now()),
            display_name=worker.display_name if worker else None,
        )
