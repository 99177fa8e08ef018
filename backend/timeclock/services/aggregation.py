"""Work/break totals per worker over days, weeks and custom ranges.

Attribution: a session counts in full toward the bucket that contains its
``clock_in``. A session that runs past midnight (or past the end of a
range) is never split and never counted in two buckets. Completed
sessions contribute their stored totals; an active session contributes
live totals evaluated at the query's "now".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional

from timeclock.core.clock import Clock, SystemClock
from timeclock.core.errors import InvalidRange
from timeclock.models.enums import SessionStatus
from timeclock.services.elapsed import live_totals
from timeclock.services.store import RangeSnapshot, SessionStore


@dataclass
class Aggregate:
    worker_id: Optional[int]
    start: datetime
    end: datetime
    total_work_seconds: int = 0
    total_break_seconds: int = 0
    sessions_count: int = 0
    has_live_session: bool = False

    def add(self, work_seconds: int, break_seconds: int, *, live: bool = False) -> None:
        self.total_work_seconds += work_seconds
        self.total_break_seconds += break_seconds
        self.sessions_count += 1
        self.has_live_session = self.has_live_session or live


@dataclass
class DailyBreakdown:
    day: date
    total_work_seconds: int = 0
    total_break_seconds: int = 0
    sessions_count: int = 0

    def add(self, work_seconds: int, break_seconds: int) -> None:
        self.total_work_seconds += work_seconds
        self.total_break_seconds += break_seconds
        self.sessions_count += 1


@dataclass
class WorkerAggregate:
    worker_id: int
    display_name: str
    aggregate: Aggregate
    is_active: bool = False
    daily_breakdown: list[DailyBreakdown] = field(default_factory=list)


@dataclass
class AllWorkersAggregate:
    start: datetime
    end: datetime
    workers: list[WorkerAggregate] = field(default_factory=list)
    total: Optional[Aggregate] = None


@dataclass
class MemberStats:
    worker_id: int
    display_name: str
    account: Optional[str]
    today_seconds: int = 0
    week_seconds: int = 0
    month_seconds: int = 0
    is_active: bool = False


class AggregationEngine:
    def __init__(self, store: SessionStore, clock: Optional[Clock] = None, tz: tzinfo = timezone.utc) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.tz = tz

    # Bucket boundaries, local to the report timezone and returned in UTC.

    def _local_midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz).astimezone(timezone.utc)

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        return self._local_midnight(day), self._local_midnight(day + timedelta(days=1))

    def week_bounds(self, day: date) -> tuple[datetime, datetime]:
        monday = day - timedelta(days=day.weekday())
        return self._local_midnight(monday), self._local_midnight(monday + timedelta(days=7))

    def month_bounds(self, day: date) -> tuple[datetime, datetime]:
        first = day.replace(day=1)
        following = (first + timedelta(days=32)).replace(day=1)
        return self._local_midnight(first), self._local_midnight(following)

    def local_day(self, moment: datetime) -> date:
        return moment.astimezone(self.tz).date()

    def _as_utc(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=self.tz)
        return value.astimezone(timezone.utc)

    def _session_totals(self, snapshot: RangeSnapshot, now: datetime):
        for session in snapshot.sessions:
            live = session.status == SessionStatus.ACTIVE
            totals = live_totals(session, snapshot.breaks_by_session.get(session.id, []), now)
            yield session, totals, live

    # Queries

    def daily_total(self, worker_id: int, day: date) -> Aggregate:
        start, end = self.day_bounds(day)
        return self.range_total(worker_id, start, end)

    def weekly_total(self, worker_id: int, day: date) -> Aggregate:
        start, end = self.week_bounds(day)
        return self.range_total(worker_id, start, end)

    def range_total(self, worker_id: int, start: datetime, end: datetime) -> Aggregate:
        start, end = self._as_utc(start), self._as_utc(end)
        if end <= start:
            raise InvalidRange(worker_id=worker_id)

        now = self.clock.now()
        snapshot = self.store.range_snapshot(start, end, worker_id=worker_id)
        aggregate = Aggregate(worker_id=worker_id, start=start, end=end)
        for _session, totals, live in self._session_totals(snapshot, now):
            aggregate.add(totals.work_seconds, totals.break_seconds, live=live)
        return aggregate

    def all_workers_range_total(self, start: datetime, end: datetime) -> AllWorkersAggregate:
        """Every worker's totals over ``[start, end)`` with per-day rows and a grand total."""
        start, end = self._as_utc(start), self._as_utc(end)
        if end <= start:
            raise InvalidRange()

        now = self.clock.now()
        snapshot = self.store.range_snapshot(start, end)
        first_day, last_day = self.local_day(start), self.local_day(end - timedelta(microseconds=1))
        rows: dict[int, WorkerAggregate] = {}
        for worker in snapshot.workers:
            rows[worker.id] = WorkerAggregate(
                worker_id=worker.id,
                display_name=worker.display_name,
                aggregate=Aggregate(worker_id=worker.id, start=start, end=end),
                is_active=worker.id in snapshot.active_worker_ids,
                daily_breakdown=self._day_rows(first_day, last_day),
            )

        total = Aggregate(worker_id=None, start=start, end=end)
        for session, totals, live in self._session_totals(snapshot, now):
            row = rows.get(session.worker_id)
            if row is None:
                continue
            row.aggregate.add(totals.work_seconds, totals.break_seconds, live=live)
            self._add_to_day(row.daily_breakdown, first_day, session.clock_in, totals)
            total.add(totals.work_seconds, totals.break_seconds, live=live)

        return AllWorkersAggregate(start=start, end=end, workers=list(rows.values()), total=total)

    def weekly_breakdown(self, worker_id: int, day: date) -> list[DailyBreakdown]:
        """Seven Monday-first rows for the week containing *day*."""
        start, end = self.week_bounds(day)
        monday = day - timedelta(days=day.weekday())
        rows = self._day_rows(monday, monday + timedelta(days=6))

        now = self.clock.now()
        snapshot = self.store.range_snapshot(start, end, worker_id=worker_id)
        for session, totals, _live in self._session_totals(snapshot, now):
            self._add_to_day(rows, monday, session.clock_in, totals)
        return rows

    def _day_rows(self, first: date, last: date) -> list[DailyBreakdown]:
        return [DailyBreakdown(day=first + timedelta(days=offset)) for offset in range((last - first).days + 1)]

    def _add_to_day(self, rows: list[DailyBreakdown], first: date, clock_in: datetime, totals) -> None:
        index = (self.local_day(clock_in) - first).days
        if 0 <= index < len(rows):
            rows[index].add(totals.work_seconds, totals.break_seconds)

    def member_stats(self) -> list[MemberStats]:
        """Today / this week / this month work seconds for every worker."""
        now = self.clock.now()
        today = self.local_day(now)
        day_start, day_end = self.day_bounds(today)
        week_start, week_end = self.week_bounds(today)
        month_start, month_end = self.month_bounds(today)

        snapshot = self.store.range_snapshot(min(week_start, month_start), max(week_end, month_end))
        stats = {
            worker.id: MemberStats(
                worker_id=worker.id,
                display_name=worker.display_name,
                account=worker.account,
                is_active=worker.id in snapshot.active_worker_ids,
            )
            for worker in snapshot.workers
            if worker.is_active
        }
        for session, totals, _live in self._session_totals(snapshot, now):
            member = stats.get(session.worker_id)
            if member is None:
                continue
            if day_start <= session.clock_in < day_end:
                member.today_seconds += totals.work_seconds
            if week_start <= session.clock_in < week_end:
                member.week_seconds += totals.work_seconds
            if month_start <= session.clock_in < month_end:
                member.month_seconds += totals.work_seconds
        return list(stats.values())
