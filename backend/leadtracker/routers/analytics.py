"""
Lead Tracker - Analytics Router
Dashboard aggregates, funnel, map clusters and data exports.
"""
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth import require_permission
from ..database import get_db
from ..models.db_models import UserDB
from ..services.analytics import AnalyticsAggregator
from ..services.export import (
    CSV_MEDIA_TYPE, XLSX_MEDIA_TYPE, export_filename, export_rows, to_csv, to_xlsx,
)
from ..services.submission_store import SubmissionStore
from .submissions import build_filters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


# =============================================================================
# AGGREGATES
# =============================================================================

@router.get("/dashboard")
async def dashboard(
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewAnalytics")),
):
    """
    Totals, grouped breakdowns, daily/hourly series and top locations for the window.
    """
    return AnalyticsAggregator(db).dashboard(days)


@router.get("/funnel")
async def funnel(
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewAnalytics")),
):
    return AnalyticsAggregator(db).funnel(days)


@router.get("/map-data")
async def map_data(
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewAnalytics")),
):
    return AnalyticsAggregator(db).map_data(days)


# =============================================================================
# EXPORTS
# =============================================================================

def _export_rows(db: Session, dateFrom, dateTo, status, country):
    filters = build_filters(status=status, country=country, date_from=dateFrom, date_to=dateTo)
    rows = export_rows(SubmissionStore(db).iter_for_export(filters))
    if not rows:
        raise HTTPException(status_code=404, detail="No data found for export")
    return rows


def _attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export/csv")
async def export_csv(
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    status: Optional[str] = None,
    country: Optional[str] = None,
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("exportData")),
):
    rows = _export_rows(db, dateFrom, dateTo, status, country)
    logger.info(f"CSV export of {len(rows)} submissions by {user.username}")
    return _attachment(to_csv(rows), CSV_MEDIA_TYPE, export_filename("csv"))


@router.get("/export/excel")
async def export_excel(
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    status: Optional[str] = None,
    country: Optional[str] = None,
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("exportData")),
):
    rows = _export_rows(db, dateFrom, dateTo, status, country)
    logger.info(f"Excel export of {len(rows)} submissions by {user.username}")
    return _attachment(to_xlsx(rows), XLSX_MEDIA_TYPE, export_filename("xlsx"))
