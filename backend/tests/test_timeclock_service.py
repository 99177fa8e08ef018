from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError

from timeclock.core.errors import (
    AlreadyActive,
    BreakAlreadyOpen,
    BreakInProgress,
    CaptureDenied,
    CaptureTimeout,
    IdempotencyKeyMismatch,
    NoOpenBreak,
    NotActive,
    PersistenceFailed,
    SessionNotFound,
    WorkerNotFound,
)
from timeclock.models.enums import SessionStatus, WorkerState
from timeclock.services.capture_gates import CaptureReleaseError
from timeclock.services.store import SqlAlchemySessionStore

MONDAY = datetime(2026, 3, 2, tzinfo=timezone.utc)


class FlakyStore(SqlAlchemySessionStore):
    """Store whose next writes fail either before or after the commit."""

    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.fail_before_commit = 0
        self.fail_after_commit = 0

    @contextmanager
    def _write(self, operation):
        with super()._write(operation) as db:
            yield db
            if self.fail_before_commit:
                self.fail_before_commit -= 1
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
        if self.fail_after_commit:
            self.fail_after_commit -= 1
            raise PersistenceFailed()


def test_full_lifecycle_totals(service, clock, worker, gate):
    clock.set(MONDAY.replace(hour=9, minute=30))
    session = service.clock_in(worker.id)
    assert session.status == SessionStatus.ACTIVE
    assert session.clock_in == MONDAY.replace(hour=9, minute=30)
    assert gate.acquired == [worker.id]

    clock.set(MONDAY.replace(hour=10))
    time_break = service.start_break(session.id)
    assert service.worker_status(worker.id).state == WorkerState.ON_BREAK

    clock.set(MONDAY.replace(hour=10, minute=5))
    ended = service.end_break(time_break.id)
    assert ended.duration_seconds == 300
    assert service.worker_status(worker.id).state == WorkerState.ACTIVE

    clock.set(MONDAY.replace(hour=10, minute=30))
    completed = service.clock_out(session.id)
    assert completed.status == SessionStatus.COMPLETED
    assert completed.clock_out == MONDAY.replace(hour=10, minute=30)
    assert completed.total_work_seconds == 3300
    assert completed.total_break_seconds == 300
    assert gate.released == [worker.id]
    assert service.worker_status(worker.id).state == WorkerState.NOT_CLOCKED_IN


def test_worker_status_reports_live_totals(service, clock, worker):
    session = service.clock_in(worker.id)
    clock.advance(minutes=20)
    service.start_break(session.id)
    clock.advance(minutes=10)

    status = service.worker_status(worker.id)
    assert status.state == WorkerState.ON_BREAK
    assert status.session.id == session.id
    assert status.open_break is not None
    assert status.totals.work_seconds == 1200
    assert status.totals.break_seconds == 600
    assert status.display_name == "Ava Carter"


def test_clock_out_during_break_is_refused_and_leaves_session_untouched(service, clock, worker, count_breaks):
    session = service.clock_in(worker.id)
    clock.advance(minutes=30)
    time_break = service.start_break(session.id)
    clock.advance(minutes=5)

    with pytest.raises(BreakInProgress):
        service.clock_out(session.id)

    current = service.get_active_session(worker.id)
    assert current.id == session.id
    assert current.status == SessionStatus.ACTIVE
    assert current.clock_out is None
    assert service.store.get_open_break(session.id).id == time_break.id
    assert count_breaks(session.id) == 1


def test_end_break_without_open_break(service, clock, worker, count_breaks):
    session = service.clock_in(worker.id)
    time_break = service.start_break(session.id)
    clock.advance(minutes=5)
    service.end_break(time_break.id)

    with pytest.raises(NoOpenBreak):
        service.end_break(time_break.id)
    with pytest.raises(NoOpenBreak):
        service.end_current_break(session.id)

    assert service.store.get_break(time_break.id).duration_seconds == 300
    assert count_breaks(session.id) == 1
    assert service.worker_status(worker.id).state == WorkerState.ACTIVE


def test_end_current_break_closes_the_open_break(service, clock, worker):
    session = service.clock_in(worker.id)
    time_break = service.start_break(session.id)
    clock.advance(seconds=95)

    ended = service.end_current_break(session.id)
    assert ended.id == time_break.id
    assert ended.duration_seconds == 95


def test_second_break_while_one_is_open(service, worker, count_breaks):
    session = service.clock_in(worker.id)
    service.start_break(session.id)

    with pytest.raises(BreakAlreadyOpen):
        service.start_break(session.id)
    assert count_breaks(session.id) == 1


def test_clock_in_twice_is_already_active(service, worker, gate, count_sessions):
    service.clock_in(worker.id)
    with pytest.raises(AlreadyActive):
        service.clock_in(worker.id)
    assert count_sessions(worker.id) == 1
    assert gate.acquired == [worker.id]


def test_transitions_on_completed_session_are_not_active(service, clock, worker):
    session = service.clock_in(worker.id)
    clock.advance(hours=1)
    service.clock_out(session.id)

    with pytest.raises(NotActive):
        service.clock_out(session.id)
    with pytest.raises(NotActive):
        service.start_break(session.id)


def test_unknown_ids(service):
    with pytest.raises(WorkerNotFound):
        service.clock_in(999)
    with pytest.raises(WorkerNotFound):
        service.worker_status(999)
    with pytest.raises(SessionNotFound):
        service.clock_out(999)
    with pytest.raises(SessionNotFound):
        service.list_breaks(999)


def test_capture_denied_leaves_no_session(make_service, scripted_gate, worker, count_sessions):
    gate = scripted_gate(False)
    service = make_service(gate)

    with pytest.raises(CaptureDenied):
        service.clock_in(worker.id)
    assert count_sessions(worker.id) == 0
    assert service.worker_status(worker.id).state == WorkerState.NOT_CLOCKED_IN


def test_capture_gate_failure_is_denied(make_service, scripted_gate, worker, count_sessions):
    service = make_service(scripted_gate(RuntimeError("capture agent offline")))

    with pytest.raises(CaptureDenied) as excinfo:
        service.clock_in(worker.id)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert count_sessions(worker.id) == 0


def test_capture_timeout_releases_and_leaves_no_session(make_service, blocking_gate, worker, count_sessions):
    service = make_service(blocking_gate, timeout_seconds=0.2)

    with pytest.raises(CaptureTimeout):
        service.clock_in(worker.id)
    assert count_sessions(worker.id) == 0
    assert worker.id in blocking_gate.released
    assert service.worker_status(worker.id).state == WorkerState.NOT_CLOCKED_IN


def test_cancel_pending_clock_in(make_service, blocking_gate, worker, count_sessions):
    service = make_service(blocking_gate, timeout_seconds=5.0)
    outcome = {}

    def run() -> None:
        try:
            outcome["session"] = service.clock_in(worker.id)
        except Exception as exc:  # noqa: BLE001
            outcome["error"] = exc

    thread = threading.Thread(target=run)
    thread.start()
    assert blocking_gate.entered.wait(2)

    assert service.worker_status(worker.id).state == WorkerState.PENDING_CAPTURE
    with pytest.raises(AlreadyActive):
        service.clock_in(worker.id)

    assert service.cancel_clock_in(worker.id) is True
    thread.join(5)
    assert not thread.is_alive()

    assert isinstance(outcome.get("error"), CaptureDenied)
    assert "session" not in outcome
    assert count_sessions(worker.id) == 0
    assert service.worker_status(worker.id).state == WorkerState.NOT_CLOCKED_IN
    assert service.cancel_clock_in(worker.id) is False


def test_release_failure_does_not_block_clock_out(make_service, scripted_gate, clock, worker):
    gate = scripted_gate(release_error=CaptureReleaseError("monitor unreachable"))
    service = make_service(gate)
    session = service.clock_in(worker.id)
    clock.advance(hours=2)

    completed = service.clock_out(session.id)
    assert completed.status == SessionStatus.COMPLETED
    assert completed.total_work_seconds == 7200
    assert gate.released == [worker.id]


def test_concurrent_clock_ins_for_one_worker_create_one_session(make_service, scripted_gate, worker, count_sessions):
    gate = scripted_gate(delay=0.1)
    service = make_service(gate)

    def attempt():
        try:
            return service.clock_in(worker.id)
        except AlreadyActive as exc:
            return exc

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(lambda _i: attempt(), range(6)))

    sessions = [r for r in results if not isinstance(r, Exception)]
    assert len(sessions) == 1
    assert all(isinstance(r, AlreadyActive) for r in results if r is not sessions[0])
    assert count_sessions(worker.id) == 1


def test_workers_clock_in_independently(service, worker, other_worker, count_sessions):
    with ThreadPoolExecutor(max_workers=2) as pool:
        first, second = pool.map(service.clock_in, [worker.id, other_worker.id])

    assert first.id != second.id
    assert first.clock_in == second.clock_in
    assert {first.worker_id, second.worker_id} == {worker.id, other_worker.id}
    assert count_sessions() == 2
    assert {s.worker_id for s in service.list_active_sessions()} == {worker.id, other_worker.id}


def test_store_rejects_second_active_session(store, clock, worker, count_sessions):
    store.create_session(worker.id, clock.now())
    with pytest.raises(AlreadyActive):
        store.create_session(worker.id, clock.now() + timedelta(seconds=1))
    assert count_sessions(worker.id) == 1


def test_store_rejects_second_open_break(store, clock, worker):
    session = store.create_session(worker.id, clock.now())
    store.open_break(session.id, clock.now())
    with pytest.raises(BreakAlreadyOpen):
        store.open_break(session.id, clock.now())


def test_failed_write_is_retryable_and_leaves_no_session(
    make_service, session_factory, gate, worker, count_sessions
):
    flaky = FlakyStore(session_factory)
    service = make_service(gate, service_store=flaky)
    flaky.fail_before_commit = 1

    with pytest.raises(PersistenceFailed) as excinfo:
        service.clock_in(worker.id, idempotency_key="clock-in-1")
    assert excinfo.value.retryable is True
    assert count_sessions(worker.id) == 0
    assert gate.released == [worker.id]

    session = service.clock_in(worker.id, idempotency_key="clock-in-1")
    assert session.status == SessionStatus.ACTIVE
    assert count_sessions(worker.id) == 1


def test_retry_after_ambiguous_commit_keeps_capture_and_replays_the_session(
    make_service, session_factory, gate, worker, count_sessions
):
    flaky = FlakyStore(session_factory)
    service = make_service(gate, service_store=flaky)
    flaky.fail_after_commit = 1

    with pytest.raises(PersistenceFailed):
        service.clock_in(worker.id, idempotency_key="clock-in-1")
    assert count_sessions(worker.id) == 1
    assert gate.released == []
    assert service.worker_status(worker.id).state == WorkerState.ACTIVE

    replayed = service.clock_in(worker.id, idempotency_key="clock-in-1")
    assert count_sessions(worker.id) == 1
    assert replayed.id == flaky.get_active_session(worker.id).id
    assert gate.acquired == [worker.id]
    assert gate.released == []

    service.clock_out(replayed.id)
    assert gate.released == [worker.id]


def test_idempotent_break_start_returns_same_break(service, worker, count_breaks):
    session = service.clock_in(worker.id)
    first = service.start_break(session.id, idempotency_key="break-1")
    second = service.start_break(session.id, idempotency_key="break-1")

    assert first.id == second.id
    assert count_breaks(session.id) == 1


def test_idempotency_key_reused_for_different_request(service, clock, worker):
    session = service.clock_in(worker.id)
    time_break = service.start_break(session.id, idempotency_key="break-1")
    clock.advance(minutes=1)
    service.end_break(time_break.id)
    service.clock_out(session.id)

    next_session = service.clock_in(worker.id)
    with pytest.raises(IdempotencyKeyMismatch):
        service.start_break(next_session.id, idempotency_key="break-1")


def test_retried_end_current_break_replays_the_ended_break(service, clock, worker, count_breaks):
    session = service.clock_in(worker.id)
    time_break = service.start_break(session.id)
    clock.advance(seconds=60)

    first = service.end_current_break(session.id, idempotency_key="end-1")
    clock.advance(seconds=30)
    second = service.end_current_break(session.id, idempotency_key="end-1")

    assert first.id == second.id == time_break.id
    assert second.duration_seconds == 60
    assert count_breaks(session.id) == 1


def test_end_current_break_key_from_another_session_is_rejected(service, clock, worker):
    session = service.clock_in(worker.id)
    service.start_break(session.id)
    clock.advance(seconds=60)
    service.end_current_break(session.id, idempotency_key="end-1")
    service.clock_out(session.id)

    next_session = service.clock_in(worker.id)
    service.start_break(next_session.id)
    with pytest.raises(IdempotencyKeyMismatch):
        service.end_current_break(next_session.id, idempotency_key="end-1")
    assert service.worker_status(worker.id).state == WorkerState.ON_BREAK


def test_late_grant_after_timeout_is_released(make_service, scripted_gate, worker, count_sessions):
    gate = scripted_gate(delay=0.5)
    service = make_service(gate, timeout_seconds=0.1)

    with pytest.raises(CaptureTimeout):
        service.clock_in(worker.id)
    assert gate.released == [worker.id]

    for _ in range(300):
        if len(gate.released) == 2:
            break
        threading.Event().wait(0.01)
    assert gate.acquired == [worker.id]
    assert gate.released == [worker.id, worker.id]
    assert count_sessions(worker.id) == 0


def test_late_denial_after_timeout_is_not_released_again(make_service, scripted_gate, worker):
    gate = scripted_gate(False, delay=0.3)
    service = make_service(gate, timeout_seconds=0.1)

    with pytest.raises(CaptureTimeout):
        service.clock_in(worker.id)
    for _ in range(100):
        if gate.acquired:
            break
        threading.Event().wait(0.01)
    threading.Event().wait(0.1)
    assert gate.released == [worker.id]


def test_active_sessions_gauge_follows_clock_in_and_out(service, clock, worker, other_worker):
    service.clock_in(worker.id)
    second = service.clock_in(other_worker.id)
    assert REGISTRY.get_sample_value("timeclock_active_sessions") == 2

    clock.advance(minutes=10)
    service.clock_out(second.id)
    assert REGISTRY.get_sample_value("timeclock_active_sessions") == 1
