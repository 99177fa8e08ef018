"""Reports router: daily, weekly and range totals."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from timeclock.core.deps import get_aggregation_engine
from timeclock.schemas.reports import (
    AggregateRead,
    AllWorkersAggregateRead,
    DailyBreakdownRead,
    MemberStatsRead,
)
from timeclock.services.aggregation import AggregationEngine

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/daily", response_model=AggregateRead)
def daily_total(
    worker_id: int = Query(...),
    day: Optional[date] = Query(None),
    engine: AggregationEngine = Depends(get_aggregation_engine),
) -> AggregateRead:
    """Totals for sessions clocked in on *day* (defaults to today)."""
    target = day or engine.local_day(engine.clock.now())
    return AggregateRead.model_validate(engine.daily_total(worker_id, target))


@router.get("/weekly", response_model=List[DailyBreakdownRead])
def weekly_breakdown(
    worker_id: int = Query(...),
    day: Optional[date] = Query(None),
    engine: AggregationEngine = Depends(get_aggregation_engine),
) -> List[DailyBreakdownRead]:
    target = day or engine.local_day(engine.clock.now())
    return [DailyBreakdownRead.model_validate(row) for row in engine.weekly_breakdown(worker_id, target)]


@router.get("/range", response_model=AggregateRead)
def range_total(
    worker_id: int = Query(...),
    start: datetime = Query(...),
    end: datetime = Query(...),
    engine: AggregationEngine = Depends(get_aggregation_engine),
) -> AggregateRead:
    """Totals over ``[start, end)``. Naive values are read in the report timezone."""
    return AggregateRead.model_validate(engine.range_total(worker_id, start, end))


@router.get("/range/all", response_model=AllWorkersAggregateRead)
def all_workers_range_total(
    start: datetime = Query(...),
    end: datetime = Query(...),
    engine: AggregationEngine = Depends(get_aggregation_engine),
) -> AllWorkersAggregateRead:
    return AllWorkersAggregateRead.model_validate(engine.all_workers_range_total(start, end))


@router.get("/members", response_model=List[MemberStatsRead])
def member_stats(engine: AggregationEngine = Depends(get_aggregation_engine)) -> List[MemberStatsRead]:
    return [MemberStatsRead.model_validate(row) for row in engine.member_stats()]
