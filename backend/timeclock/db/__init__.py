from timeclock.db.base import Base, IDMixin, TimestampMixin, UTCDateTime, utcnow
from timeclock.db.session import SessionLocal, engine

__all__ = [
    "Base",
    "IDMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utcnow",
    "engine",
    "SessionLocal",
]
