"""Worker: identity reference for the people who clock in."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeclock.db.base import Base, IDMixin, TimestampMixin


class Worker(IDMixin, TimestampMixin, Base):
    __tablename__ = "workers"

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    sessions: Mapped[List["TimeSession"]] = relationship(back_populates="worker")
