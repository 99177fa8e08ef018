"""TimeSession / TimeBreak: clock-in periods and the breaks inside them."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, Integer, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeclock.db.base import Base, IDMixin, TimestampMixin, UTCDateTime
from timeclock.models.enums import SessionStatus


class TimeSession(IDMixin, TimestampMixin, Base):
    __tablename__ = "time_sessions"
    __table_args__ = (
        CheckConstraint(
            "clock_out IS NULL OR clock_out >= clock_in",
            name="clock_out_after_clock_in",
        ),
        # One active session per worker, enforced by the store as well as the service lock.
        Index(
            "uq_time_sessions_active_worker",
            "worker_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_time_sessions_worker_clock_in", "worker_id", "clock_in"),
    )

    worker_id: Mapped[int] = mapped_column(ForeignKey("workers.id"), nullable=False, index=True)
    clock_in: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    clock_out: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(
            SessionStatus,
            name="time_session_status",
            values_callable=lambda members: [member.value for member in members],
        ),
        nullable=False,
        default=SessionStatus.ACTIVE,
        index=True,
    )
    total_work_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_break_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    worker: Mapped["Worker"] = relationship(back_populates="sessions")
    breaks: Mapped[List["TimeBreak"]] = relationship(
        back_populates="session",
        order_by="TimeBreak.break_start",
    )


class TimeBreak(IDMixin, TimestampMixin, Base):
    __tablename__ = "time_breaks"
    __table_args__ = (
        CheckConstraint(
            "break_end IS NULL OR break_end >= break_start",
            name="break_end_after_break_start",
        ),
        Index(
            "uq_time_breaks_open_session",
            "session_id",
            unique=True,
            sqlite_where=text("break_end IS NULL"),
            postgresql_where=text("break_end IS NULL"),
        ),
    )

    session_id: Mapped[int] = mapped_column(ForeignKey("time_sessions.id"), nullable=False, index=True)
    break_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    break_end: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    session: Mapped["TimeSession"] = relationship(back_populates="breaks")
