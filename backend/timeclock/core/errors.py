"""Error taxonomy for time clock transitions and reports.

Validation errors describe a violated precondition and are final for the
requested operation. ``PersistenceFailed`` is the only retryable error.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse


class TimeClockError(Exception):
    code = "timeclock_error"
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False
    default_message = "Time clock operation failed"

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "retryable": self.retryable}


class AlreadyActive(TimeClockError):
    code = "already_active"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Worker is already clocked in"


class NotActive(TimeClockError):
    code = "not_active"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Session is not active"


class BreakAlreadyOpen(TimeClockError):
    code = "break_already_open"
    status_code = status.HTTP_409_CONFLICT
    default_message = "A break is already in progress"


class NoOpenBreak(TimeClockError):
    code = "no_open_break"
    status_code = status.HTTP_409_CONFLICT
    default_message = "No break is in progress"


class BreakInProgress(TimeClockError):
    code = "break_in_progress"
    status_code = status.HTTP_409_CONFLICT
    default_message = "End the current break before clocking out"


class CaptureDenied(TimeClockError):
    code = "capture_denied"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Screen capture was not granted"


class CaptureTimeout(TimeClockError):
    code = "capture_timeout"
    status_code = status.HTTP_408_REQUEST_TIMEOUT
    default_message = "Screen capture handshake timed out"


class PersistenceFailed(TimeClockError):
    code = "persistence_failed"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Could not save the change, please retry"


class WorkerNotFound(TimeClockError):
    code = "worker_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Worker not found"


class SessionNotFound(TimeClockError):
    code = "session_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Session not found"


class BreakNotFound(TimeClockError):
    code = "break_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Break not found"


class InvalidRange(TimeClockError):
    code = "invalid_range"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Range end must be after range start"


class IdempotencyKeyMismatch(TimeClockError):
    code = "idempotency_key_mismatch"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Idempotency key mismatch"


async def timeclock_error_handler(request: Request, exc: TimeClockError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
