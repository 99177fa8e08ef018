from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from timeclock.schemas.base import ORMModel


class AggregateRead(ORMModel):
    worker_id: Optional[int] = None
    start: datetime
    end: datetime
    total_work_seconds: int = 0
    total_break_seconds: int = 0
    sessions_count: int = 0
    has_live_session: bool = False


class DailyBreakdownRead(ORMModel):
    day: date
    total_work_seconds: int = 0
    total_break_seconds: int = 0
    sessions_count: int = 0


class WorkerAggregateRead(ORMModel):
    worker_id: int
    display_name: str
    aggregate: AggregateRead
    is_active: bool = False
    daily_breakdown: List[DailyBreakdownRead] = []


class AllWorkersAggregateRead(ORMModel):
    start: datetime
    end: datetime
    workers: List[WorkerAggregateRead]
    total: AggregateRead


class MemberStatsRead(ORMModel):
    worker_id: int
    display_name: str
    account: Optional[str] = None
    today_seconds: int = 0
    week_seconds: int = 0
    month_seconds: int = 0
    is_active: bool = False
