"""Lead Tracker - API Routers"""
from .auth import router as auth_router
from .submissions import router as submissions_router
from .analytics import router as analytics_router
from .ingest import router as ingest_router

__all__ = [
    "auth_router",
    "submissions_router",
    "analytics_router",
    "ingest_router",
]
