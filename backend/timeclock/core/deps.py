"""Process-wide service wiring, exposed as FastAPI dependencies.

Tests replace these through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from timeclock.core.clock import SystemClock
from timeclock.core.settings import settings
from timeclock.db.session import SessionLocal
from timeclock.services.aggregation import AggregationEngine
from timeclock.services.capture import CaptureCoordinator
from timeclock.services.capture_gates import CaptureGate, build_capture_gate
from timeclock.services.store import SqlAlchemySessionStore
from timeclock.services.timeclock import TimeClockService


@lru_cache(maxsize=1)
def get_store() -> SqlAlchemySessionStore:
    return SqlAlchemySessionStore(SessionLocal)


@lru_cache(maxsize=1)
def get_capture_gate() -> CaptureGate:
    return build_capture_gate(settings)


@lru_cache(maxsize=1)
def get_timeclock_service() -> TimeClockService:
    coordinator = CaptureCoordinator(get_capture_gate(), timeout_seconds=settings.capture_timeout_seconds)
    return TimeClockService(get_store(), coordinator, SystemClock())


@lru_cache(maxsize=1)
def get_aggregation_engine() -> AggregationEngine:
    return AggregationEngine(get_store(), SystemClock(), settings.report_tz)
