"""
Lead Tracker - Submissions Router
Listing, detail, status/notes updates, bulk update and soft delete.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from dateutil import parser as date_parser
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import require_permission
from ..database import get_db
from ..errors import LeadTrackerError
from ..models.db_models import UserDB
from ..services.submission_store import SubmissionFilters, SubmissionStore, VALID_STATUSES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/submissions", tags=["submissions"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class StatusUpdateRequest(BaseModel):
    status: Optional[str] = None


class NotesRequest(BaseModel):
    notes: Optional[str] = None


class BulkUpdateRequest(BaseModel):
    ids: Optional[List[str]] = None
    updates: Optional[Dict[str, Any]] = None


# =============================================================================
# HELPERS
# =============================================================================

def parse_query_date(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError):
        raise HTTPException(status_code=400, detail=f"Invalid {name} date")
    return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed


def build_filters(
    search: Optional[str] = None,
    status: Optional[str] = None,
    country: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> SubmissionFilters:
    return SubmissionFilters(
        search=search or None,
        status=status or None,
        country=country or None,
        date_from=parse_query_date(date_from, "dateFrom"),
        date_to=parse_query_date(date_to, "dateTo"),
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.get("")
async def list_submissions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    search: Optional[str] = None,
    status: Optional[str] = None,
    country: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    sortBy: str = "submission_date",
    sortOrder: str = "desc",
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewSubmissions")),
):
    """
    Paginated submissions with search, status/country/date filters and sorting.
    """
    filters = build_filters(search, status, country, dateFrom, dateTo)
    try:
        result = SubmissionStore(db).find(filters, sort_by=sortBy, sort_order=sortOrder, page=page, limit=limit)
    except LeadTrackerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {
        "submissions": [s.to_dict() for s in result.items],
        "pagination": result.pagination(),
        "filters": filters.as_dict(),
    }


@router.get("/recent/summary")
async def recent_summary(
    days: int = Query(7, ge=1),
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewSubmissions")),
):
    """Ten most recent submissions in the window."""
    return [
        {
            "id": s.id,
            "fname": s.fname,
            "lname": s.lname,
            "email": s.email,
            "submission_date": s.submission_date.isoformat() if s.submission_date else None,
            "status": s.status,
            "geolocation": {"city": s.geo_city, "country": s.geo_country},
            "quality_score": s.quality_score,
        }
        for s in SubmissionStore(db).recent(days=days)
    ]


@router.get("/location/stats")
async def location_stats(
    days: int = Query(30, ge=1),
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewSubmissions")),
):
    return SubmissionStore(db).location_stats(days=days)


@router.patch("/bulk/update")
async def bulk_update(
    request: BulkUpdateRequest,
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewSubmissions")),
):
    """
    Apply one partial update to many submissions. Best effort, no rollback.
    """
    if request.ids is None or not request.updates:
        raise HTTPException(status_code=400, detail="Invalid request: ids array and updates object required")

    try:
        modified = SubmissionStore(db).bulk_update(request.ids, request.updates)
    except LeadTrackerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    logger.info(f"Bulk update by {user.username}: {modified} modified")
    return {"message": f"Updated {modified} submissions", "modifiedCount": modified}


@router.get("/{submission_id}")
async def get_submission(
    submission_id: str,
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewSubmissions")),
):
    try:
        return SubmissionStore(db).get_by_id(submission_id).to_dict()
    except LeadTrackerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{submission_id}/status")
async def update_status(
    submission_id: str,
    request: StatusUpdateRequest,
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewSubmissions")),
):
    if request.status not in VALID_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}",
        )
    try:
        submission = SubmissionStore(db).update_status(submission_id, request.status)
    except LeadTrackerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {"message": "Status updated successfully", "submission": submission.to_dict()}


@router.patch("/{submission_id}/notes")
async def add_notes(
    submission_id: str,
    request: NotesRequest,
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("viewSubmissions")),
):
    try:
        submission = SubmissionStore(db).append_note(submission_id, request.notes or "", user.id)
    except LeadTrackerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {"message": "Notes added successfully", "submission": submission.to_dict()}


@router.delete("/{submission_id}")
async def delete_submission(
    submission_id: str,
    db: Session = Depends(get_db),
    user: UserDB = Depends(require_permission("manageUsers")),
):
    """Soft delete: status becomes deleted, the row stays."""
    try:
        SubmissionStore(db).soft_delete(submission_id, user.id)
    except LeadTrackerError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {"message": "Submission deleted successfully"}
