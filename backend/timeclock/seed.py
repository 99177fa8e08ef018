from __future__ import annotations

import argparse
from datetime import datetime, time, timedelta, timezone

from sqlalchemy.orm import Session

from timeclock.core.settings import settings
from timeclock.db.base import Base
from timeclock.db.session import SessionLocal, engine
import timeclock.models  # noqa: F401
from timeclock.models.enums import SessionStatus
from timeclock.models.time_session import TimeBreak, TimeSession
from timeclock.models.worker import Worker

DEMO_WORKERS = [
    ("Ava Carter", "Call Center"),
    ("Leo Martins", "Call Center"),
    ("Priya Shah", "Web Builds"),
]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the time clock database with demo workers and history")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables before seeding")
    parser.add_argument("--days", type=int, default=5, help="Days of completed sessions to generate per worker")
    return parser.parse_args()


def reset_db() -> None:
    if settings.environment.lower() in ("production", "prod"):
        raise RuntimeError("Refusing to reset the database in production.")
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def get_or_create_worker(db: Session, *, display_name: str, account: str) -> Worker:
    worker = db.query(Worker).filter(Worker.display_name == display_name).first()
    if worker:
        return worker
    worker = Worker(display_name=display_name, account=account, is_active=True)
    db.add(worker)
    db.flush()
    return worker


def seed_history(db: Session, worker: Worker, *, days: int) -> int:
    """Completed 09:00-17:00 sessions with a 30 minute lunch, one per past weekday."""
    created = 0
    today = datetime.now(settings.report_tz).date()
    for offset in range(1, days + 1):
        day = today - timedelta(days=offset)
        if day.weekday() >= 5:
            continue
        clock_in = datetime.combine(day, time(9, 0), tzinfo=settings.report_tz).astimezone(timezone.utc)
        exists = (
            db.query(TimeSession)
            .filter(TimeSession.worker_id == worker.id, TimeSession.clock_in == clock_in)
            .first()
        )
        if exists:
            continue
        clock_out = clock_in + timedelta(hours=8)
        break_start = clock_in + timedelta(hours=3, minutes=30)
        session = TimeSession(
            worker_id=worker.id,
            clock_in=clock_in,
            clock_out=clock_out,
            status=SessionStatus.COMPLETED,
            total_work_seconds=8 * 3600 - 1800,
            total_break_seconds=1800,
        )
        db.add(session)
        db.flush()
        db.add(
            TimeBreak(
                session_id=session.id,
                break_start=break_start,
                break_end=break_start + timedelta(minutes=30),
                duration_seconds=1800,
            )
        )
        created += 1
    return created


def main() -> None:
    args = parse_args()
    if args.reset:
        reset_db()
    else:
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        total = 0
        for display_name, account in DEMO_WORKERS:
            worker = get_or_create_worker(db, display_name=display_name, account=account)
            total += seed_history(db, worker, days=args.days)
        db.commit()
        print(f"Seeded {len(DEMO_WORKERS)} workers and {total} sessions")
    finally:
        db.close()


if __name__ == "__main__":
    main()
