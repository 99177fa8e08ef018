"""Central router registry."""
from __future__ import annotations

from fastapi import FastAPI

from timeclock.routers.reports import router as reports_router
from timeclock.routers.timeclock import router as timeclock_router
from timeclock.routers.workers import router as workers_router

ALL_ROUTERS = (
    workers_router,
    timeclock_router,
    reports_router,
)


def include_all_routers(app: FastAPI) -> None:
    for router in ALL_ROUTERS:
        app.include_router(router)
