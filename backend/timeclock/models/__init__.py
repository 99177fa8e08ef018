"""Import all models so SQLAlchemy metadata is fully registered."""

from timeclock.db.base import Base

from timeclock.models.enums import IdempotencyScope, SessionStatus, WorkerState
from timeclock.models.idempotency import IdempotencyKey
from timeclock.models.time_session import TimeBreak, TimeSession
from timeclock.models.worker import Worker

__all__ = [
    "Base",
    "IdempotencyKey",
    "IdempotencyScope",
    "SessionStatus",
    "TimeBreak",
    "TimeSession",
    "Worker",
    "WorkerState",
]
