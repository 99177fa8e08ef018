"""Create workers, time sessions, breaks and idempotency keys.

Revision ID: 0001_create_timeclock_tables
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_create_timeclock_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "workers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("account", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_workers_id", "workers", ["id"])

    op.create_table(
        "time_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("worker_id", sa.Integer(), sa.ForeignKey("workers.id"), nullable=False),
        sa.Column("clock_in", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            sa.Enum("active", "completed", name="time_session_status"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("total_work_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_break_seconds", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "clock_out IS NULL OR clock_out >= clock_in",
            name="ck_time_sessions_clock_out_after_clock_in",
        ),
    )
    op.create_index("ix_time_sessions_id", "time_sessions", ["id"])
    op.create_index("ix_time_sessions_worker_id", "time_sessions", ["worker_id"])
    op.create_index("ix_time_sessions_clock_in", "time_sessions", ["clock_in"])
    op.create_index("ix_time_sessions_status", "time_sessions", ["status"])
    op.create_index("ix_time_sessions_worker_clock_in", "time_sessions", ["worker_id", "clock_in"])
    op.create_index(
        "uq_time_sessions_active_worker",
        "time_sessions",
        ["worker_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "time_breaks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("time_sessions.id"), nullable=False),
        sa.Column("break_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("break_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "break_end IS NULL OR break_end >= break_start",
            name="ck_time_breaks_break_end_after_break_start",
        ),
    )
    op.create_index("ix_time_breaks_id", "time_breaks", ["id"])
    op.create_index("ix_time_breaks_session_id", "time_breaks", ["session_id"])
    op.create_index(
        "uq_time_breaks_open_session",
        "time_breaks",
        ["session_id"],
        unique=True,
        sqlite_where=sa.text("break_end IS NULL"),
        postgresql_where=sa.text("break_end IS NULL"),
    )

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("scope", sa.String(64), nullable=False),
        sa.Column("worker_id", sa.Integer(), sa.ForeignKey("workers.id"), nullable=False),
        sa.Column("request_hash", sa.String(64), nullable=False),
        sa.Column("response_payload", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("key", "scope", "worker_id", name="uq_idempotency_key_scope_worker"),
    )
    op.create_index("ix_idempotency_keys_id", "idempotency_keys", ["id"])
    op.create_index("ix_idempotency_keys_key", "idempotency_keys", ["key"])
    op.create_index("ix_idempotency_keys_scope", "idempotency_keys", ["scope"])
    op.create_index("ix_idempotency_keys_worker_id", "idempotency_keys", ["worker_id"])


def downgrade() -> None:
    op.drop_table("idempotency_keys")
    op.drop_table("time_breaks")
    op.drop_table("time_sessions")
    op.drop_table("workers")
    sa.Enum(name="time_session_status").drop(op.get_bind(), checkfirst=True)
