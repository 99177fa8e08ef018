from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from timeclock.models import Base, TimeBreak, TimeSession
from timeclock.services.aggregation import AggregationEngine
from timeclock.services.capture import CaptureCoordinator
from timeclock.services.store import SqlAlchemySessionStore
from timeclock.services.timeclock import TimeClockService


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self.current

    def set(self, value: datetime) -> None:
        with self._lock:
            self.current = value

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        with self._lock:
            self.current = self.current + timedelta(seconds=seconds, **kwargs)
            return self.current


class ScriptedGate:
    """Capture gate with a fixed answer that records every call."""

    def __init__(self, outcome: bool = True, *, delay: float = 0.0, release_error: Optional[Exception] = None) -> None:
        self.outcome = outcome
        self.delay = delay
        self.release_error = release_error
        self.acquired: list[int] = []
        self.released: list[int] = []
        self._lock = threading.Lock()

    def acquire(self, worker_id: int) -> bool:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.acquired.append(worker_id)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def release(self, worker_id: int) -> None:
        with self._lock:
            self.released.append(worker_id)
        if self.release_error is not None:
            raise self.release_error


class BlockingGate:
    """Capture gate that never answers until released."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self._unblock = threading.Event()
        self.released: list[int] = []

    def acquire(self, worker_id: int) -> bool:
        self.entered.set()
        self._unblock.wait(5)
        return False

    def release(self, worker_id: int) -> None:
        self.released.append(worker_id)
        self._unblock.set()


@pytest.fixture()
def session_factory(tmp_path):
    # File-backed so worker threads get their own connections.
    engine = create_engine(
        f"sqlite:///{tmp_path / 'timeclock.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    try:
        yield factory
    finally:
        engine.dispose()


@pytest.fixture()
def store(session_factory):
    return SqlAlchemySessionStore(session_factory)


@pytest.fixture()
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def gate():
    return ScriptedGate()


@pytest.fixture()
def coordinator(gate):
    coordinator = CaptureCoordinator(gate, timeout_seconds=2.0)
    try:
        yield coordinator
    finally:
        coordinator.shutdown()


@pytest.fixture()
def service(store, coordinator, clock):
    return TimeClockService(store, coordinator, clock)


@pytest.fixture()
def engine(store, clock):
    return AggregationEngine(store, clock)


@pytest.fixture()
def worker(store):
    return store.create_worker(display_name="Ava Carter", account="Call Center")


@pytest.fixture()
def other_worker(store):
    return store.create_worker(display_name="Leo Martins", account="Call Center")


@pytest.fixture()
def count_sessions(session_factory):
    def _count(worker_id: Optional[int] = None) -> int:
        with session_factory() as db:
            query = select(func.count()).select_from(TimeSession)
            if worker_id is not None:
                query = query.where(TimeSession.worker_id == worker_id)
            return db.scalar(query)

    return _count


@pytest.fixture()
def count_breaks(session_factory):
    def _count(session_id: int) -> int:
        with session_factory() as db:
            return db.scalar(select(func.count()).select_from(TimeBreak).where(TimeBreak.session_id == session_id))

    return _count


@pytest.fixture()
def scripted_gate():
    return ScriptedGate


@pytest.fixture()
def blocking_gate():
    gate = BlockingGate()
    try:
        yield gate
    finally:
        gate.release(0)


@pytest.fixture()
def make_service(store, clock):
    coordinators: list[CaptureCoordinator] = []

    def _make(gate, *, timeout_seconds: float = 2.0, service_store=None) -> TimeClockService:
        coordinator = CaptureCoordinator(gate, timeout_seconds=timeout_seconds)
        coordinators.append(coordinator)
        return TimeClockService(service_store or store, coordinator, clock)

    try:
        yield _make
    finally:
        for coordinator in coordinators:
            coordinator.shutdown()
