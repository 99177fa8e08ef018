from __future__ import annotations

import enum


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class WorkerState(str, enum.Enum):
    NOT_CLOCKED_IN = "not_clocked_in"
    PENDING_CAPTURE = "pending_capture"
    ACTIVE = "active"
    ON_BREAK = "on_break"


class IdempotencyScope(str, enum.Enum):
    CLOCK_IN = "clock_in"
    START_BREAK = "start_break"
    END_BREAK = "end_break"
    CLOCK_OUT = "clock_out"
