"""Schemas for clock-in / break / clock-out endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from timeclock.models.enums import SessionStatus, WorkerState
from timeclock.schemas.base import ORMModel
from timeclock.services.elapsed import format_duration


class TimeSessionRead(ORMModel):
    id: int
    worker_id: int
    clock_in: datetime
    clock_out: Optional[datetime] = None
    status: SessionStatus
    total_work_seconds: int = 0
    total_break_seconds: int = 0
    created_at: datetime
    updated_at: datetime


class TimeBreakRead(ORMModel):
    id: int
    session_id: int
    break_start: datetime
    break_end: Optional[datetime] = None
    duration_seconds: int = 0


class LiveTotalsRead(ORMModel):
    work_seconds: int
    break_seconds: int
    elapsed_seconds: int
    on_break: bool = False
    work_display: str = ""
    break_display: str = ""

    @classmethod
    def from_totals(cls, totals) -> "LiveTotalsRead":
        return cls(
            work_seconds=totals.work_seconds,
            break_seconds=totals.break_seconds,
            elapsed_seconds=totals.elapsed_seconds,
            on_break=totals.on_break,
            work_display=format_duration(totals.work_seconds),
            break_display=format_duration(totals.break_seconds),
        )


class WorkerStatusRead(ORMModel):
    worker_id: int
    display_name: Optional[str] = None
    state: WorkerState
    session: Optional[TimeSessionRead] = None
    open_break: Optional[TimeBreakRead] = None
    totals: Optional[LiveTotalsRead] = None

    @classmethod
    def from_status(cls, status) -> "WorkerStatusRead":
        return cls(
            worker_id=status.worker_id,
            display_name=status.display_name,
            state=status.state,
            session=TimeSessionRead.model_validate(status.session) if status.session else None,
            open_break=TimeBreakRead.model_validate(status.open_break) if status.open_break else None,
            totals=LiveTotalsRead.from_totals(status.totals) if status.totals else None,
        )


class CaptureResult(ORMModel):
    granted: bool


class CaptureResolveRead(ORMModel):
    worker_id: int
    granted: bool
    delivered: bool = Field(description="True when a clock-in was waiting on this outcome")


class CancelClockInRead(ORMModel):
    worker_id: int
    cancelled: bool
