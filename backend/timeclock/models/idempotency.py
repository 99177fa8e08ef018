from __future__ import annotations

from typing import Optional

from sqlalchemy import ForeignKey, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from timeclock.db.base import Base, IDMixin, TimestampMixin


class IdempotencyKey(IDMixin, TimestampMixin, Base):
    """Result of a time clock transition, keyed by the caller's retry key."""

    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("key", "scope", "worker_id", name="uq_idempotency_key_scope_worker"),
    )

    key: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    scope: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    worker_id: Mapped[int] = mapped_column(ForeignKey("workers.id"), nullable=False, index=True)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    response_payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
