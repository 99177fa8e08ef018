"""Live work/break totals derived from a session's stored anchors.

Nothing here is persisted. Callers recompute on every tick from
``clock_in``, the break anchors and the current time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from timeclock.models.enums import SessionStatus
from timeclock.models.time_session import TimeBreak, TimeSession


@dataclass(frozen=True)
class LiveTotals:
    work_seconds: int
    break_seconds: int
    elapsed_seconds: int
    on_break: bool = False


def _seconds_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds())


def break_duration(time_break: TimeBreak, now: datetime) -> int:
    """Seconds a break has lasted; closed breaks report their stored duration."""
    if time_break.break_end is not None:
        return int(time_break.duration_seconds or 0)
    return max(_seconds_between(time_break.break_start, now), 0)


def open_break(breaks: Iterable[TimeBreak]) -> Optional[TimeBreak]:
    for time_break in breaks:
        if time_break.break_end is None:
            return time_break
    return None


def live_totals(session: TimeSession, breaks: Iterable[TimeBreak], now: datetime) -> LiveTotals:
    """Work and break seconds for *session* as of *now*.

    Completed sessions return their persisted snapshot. For active ones,
    work time is clamped at zero when the anchors are ahead of *now*.
    """
    if session.status == SessionStatus.COMPLETED:
        work = int(session.total_work_seconds or 0)
        rest = int(session.total_break_seconds or 0)
        return LiveTotals(work_seconds=work, break_seconds=rest, elapsed_seconds=work + rest)

    breaks = list(breaks)
    break_seconds = sum(break_duration(time_break, now) for time_break in breaks)
    elapsed = max(_seconds_between(session.clock_in, now), 0)

    work_seconds = elapsed - break_seconds
    if work_seconds < 0:
        work_seconds = 0

    return LiveTotals(
        work_seconds=work_seconds,
        break_seconds=break_seconds,
        elapsed_seconds=elapsed,
        on_break=open_break(breaks) is not None,
    )


def format_duration(seconds: int) -> str:
    """Render seconds as ``HH:MM:SS`` for the live timer display."""
    seconds = max(int(seconds), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
