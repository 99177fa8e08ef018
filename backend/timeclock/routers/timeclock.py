"""Time clock router: clock-in, breaks, clock-out and live status."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from timeclock.core.deps import get_capture_gate, get_timeclock_service
from timeclock.schemas.timeclock import (
    CancelClockInRead,
    CaptureResolveRead,
    CaptureResult,
    TimeBreakRead,
    TimeSessionRead,
    WorkerStatusRead,
)
from timeclock.services.capture_gates import CaptureGate, HandshakeCaptureGate
from timeclock.services.timeclock import TimeClockService

router = APIRouter(prefix="/api/timeclock", tags=["timeclock"])


@router.post("/workers/{worker_id}/clock-in", response_model=TimeSessionRead, status_code=status.HTTP_201_CREATED)
def clock_in(
    worker_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: TimeClockService = Depends(get_timeclock_service),
) -> TimeSessionRead:
    """Clock a worker in.

    Blocks until the screen-capture handshake is resolved (see
    ``/workers/{worker_id}/capture``), cancelled or timed out.
    """
    session = service.clock_in(worker_id, idempotency_key=idempotency_key)
    return TimeSessionRead.model_validate(session)


@router.post("/workers/{worker_id}/clock-in/cancel", response_model=CancelClockInRead)
def cancel_clock_in(
    worker_id: int,
    service: TimeClockService = Depends(get_timeclock_service),
) -> CancelClockInRead:
    return CancelClockInRead(worker_id=worker_id, cancelled=service.cancel_clock_in(worker_id))


@router.post("/workers/{worker_id}/capture", response_model=CaptureResolveRead)
def resolve_capture(
    worker_id: int,
    payload: CaptureResult,
    gate: CaptureGate = Depends(get_capture_gate),
) -> CaptureResolveRead:
    """Report the outcome of the browser's screen-capture prompt."""
    if not isinstance(gate, HandshakeCaptureGate):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Capture handshake is not enabled")
    delivered = gate.resolve(worker_id, payload.granted)
    return CaptureResolveRead(worker_id=worker_id, granted=payload.granted, delivered=delivered)


@router.get("/workers/{worker_id}/status", response_model=WorkerStatusRead)
def worker_status(
    worker_id: int,
    service: TimeClockService = Depends(get_timeclock_service),
) -> WorkerStatusRead:
    return WorkerStatusRead.from_status(service.worker_status(worker_id))


@router.get("/workers/{worker_id}/active-session", response_model=Optional[TimeSessionRead])
def active_session(
    worker_id: int,
    service: TimeClockService = Depends(get_timeclock_service),
) -> Optional[TimeSessionRead]:
    session = service.get_active_session(worker_id)
    return TimeSessionRead.model_validate(session) if session else None


@router.get("/active", response_model=List[WorkerStatusRead])
def list_active(service: TimeClockService = Depends(get_timeclock_service)) -> List[WorkerStatusRead]:
    """Everyone currently clocked in, with live totals."""
    return [WorkerStatusRead.from_status(item) for item in service.list_active_sessions()]


@router.post("/sessions/{session_id}/breaks", response_model=TimeBreakRead, status_code=status.HTTP_201_CREATED)
def start_break(
    session_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: TimeClockService = Depends(get_timeclock_service),
) -> TimeBreakRead:
    time_break = service.start_break(session_id, idempotency_key=idempotency_key)
    return TimeBreakRead.model_validate(time_break)


@router.get("/sessions/{session_id}/breaks", response_model=List[TimeBreakRead])
def list_breaks(
    session_id: int,
    service: TimeClockService = Depends(get_timeclock_service),
) -> List[TimeBreakRead]:
    return [TimeBreakRead.model_validate(item) for item in service.list_breaks(session_id)]


@router.post("/sessions/{session_id}/breaks/current/end", response_model=TimeBreakRead)
def end_current_break(
    session_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: TimeClockService = Depends(get_timeclock_service),
) -> TimeBreakRead:
    time_break = service.end_current_break(session_id, idempotency_key=idempotency_key)
    return TimeBreakRead.model_validate(time_break)


@router.post("/breaks/{break_id}/end", response_model=TimeBreakRead)
def end_break(
    break_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: TimeClockService = Depends(get_timeclock_service),
) -> TimeBreakRead:
    time_break = service.end_break(break_id, idempotency_key=idempotency_key)
    return TimeBreakRead.model_validate(time_break)


@router.post("/sessions/{session_id}/clock-out", response_model=TimeSessionRead)
def clock_out(
    session_id: int,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: TimeClockService = Depends(get_timeclock_service),
) -> TimeSessionRead:
    session = service.clock_out(session_id, idempotency_key=idempotency_key)
    return TimeSessionRead.model_validate(session)
