from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from timeclock.schemas.base import ORMModel


class WorkerCreate(ORMModel):
    display_name: str = Field(min_length=1, max_length=255)
    account: Optional[str] = Field(default=None, max_length=255)


class WorkerRead(ORMModel):
    id: int
    display_name: str
    account: Optional[str] = None
    is_active: bool
    created_at: datetime
