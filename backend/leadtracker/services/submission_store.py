"""
Submission Store

Persistence and query operations over submission records. The quality score
is recomputed at every write that changes field values; callers never set it.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import asc, desc, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import NotFoundError, PersistenceError, ValidationError
from ..models.db_models import SubmissionDB, utcnow
from ..models.records import SubmissionRecord, SubmissionStatus, UNKNOWN
from .normalizer import (
    clean_text, normalize_email, normalize_gender, normalize_phone, normalize_state,
)
from .scoring import calculate_quality_score

logger = logging.getLogger(__name__)

VALID_STATUSES = tuple(s.value for s in SubmissionStatus)

SORTABLE_FIELDS = {
    "submission_date": SubmissionDB.submission_date,
    "created_at": SubmissionDB.created_at,
    "quality_score": SubmissionDB.quality_score,
    "status": SubmissionDB.status,
    "fname": SubmissionDB.fname,
    "lname": SubmissionDB.lname,
    "email": SubmissionDB.email,
    "phone": SubmissionDB.phone,
    "city": SubmissionDB.city,
    "state": SubmissionDB.state,
    "country": SubmissionDB.geo_country,
    "region": SubmissionDB.geo_region,
    "device": SubmissionDB.device_type,
    "browser": SubmissionDB.browser_family,
}
DEFAULT_SORT = "submission_date"

# Fields a bulk patch may touch. Score and identity are excluded.
PATCHABLE_FIELDS = frozenset({
    "status", "processed", "campaign", "case_type", "ownerid", "offer_url",
    "fname", "lname", "email", "phone", "address", "city", "state", "zip", "gender",
    "utm_source", "utm_medium", "utm_campaign",
})

FIELD_NORMALIZERS = {
    "email": normalize_email,
    "phone": normalize_phone,
    "state": normalize_state,
    "gender": normalize_gender,
}
# Provenance columns are NOT NULL; blanks are stored as ""
REQUIRED_TEXT_FIELDS = frozenset({
    "campaign", "case_type", "ownerid", "offer_url", "utm_source", "utm_medium", "utm_campaign",
})


def normalize_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Apply the ingestion field rules to a partial update.

    Status is validated and `processed` is derived from it, as in update_status.
    """
    normalized: Dict[str, Any] = {}
    for key, value in patch.items():
        if key == "status":
            if value not in VALID_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")
            normalized[key] = value
        elif key == "processed":
            normalized[key] = bool(value)
        else:
            text = None if value is None or isinstance(value, (dict, list)) else str(value)
            normalized[key] = FIELD_NORMALIZERS.get(key, clean_text)(text)
            if key in REQUIRED_TEXT_FIELDS and normalized[key] is None:
                normalized[key] = ""

    if "status" in normalized:
        normalized["processed"] = normalized["status"] != SubmissionStatus.PENDING.value
    return normalized


@dataclass
class SubmissionFilters:
    """Equality, date-range and free-text filters for listing and export."""
    search: Optional[str] = None
    status: Optional[str] = None
    country: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "search": self.search,
            "status": self.status,
            "country": self.country,
            "dateFrom": self.date_from.isoformat() if self.date_from else None,
            "dateTo": self.date_to.isoformat() if self.date_to else None,
        }


@dataclass
class Page:
    items: List[SubmissionDB] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> Dict[str, int]:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


LIKE_ESCAPE = "\\"


def escape_like(text: str) -> str:
    """Make % and _ match literally in a LIKE pattern."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def rescore(submission: SubmissionDB) -> int:
    """Recompute and assign the quality score from the row's current values."""
    submission.quality_score = calculate_quality_score(submission.to_record())
    return submission.quality_score


class SubmissionStore:
    """Submission persistence over a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # WRITES
    # =========================================================================

    def insert(self, record: SubmissionRecord) -> SubmissionDB:
        """Assign an id, score and persist a normalized record."""
        submission = SubmissionDB.from_record(record)
        submission.id = str(uuid4())
        rescore(submission)

        self.db.add(submission)
        self._commit("insert submission")
        self.db.refresh(submission)
        return submission

    def update_status(self, submission_id: str, status: str) -> SubmissionDB:
        """Set any status from any other; processed follows status != pending."""
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")

        submission = self.get_by_id(submission_id)
        submission.status = status
        submission.processed = status != SubmissionStatus.PENDING.value
        rescore(submission)

        self._commit("update status")
        self.db.refresh(submission)
        logger.info(f"Submission {submission_id} status -> {status}")
        return submission

    def append_note(self, submission_id: str, content: str, author_id: str) -> SubmissionDB:
        """Append a timestamped note. The score is left untouched."""
        content = (content or "").strip()
        if not content:
            raise ValidationError("Note content is required")

        submission = self.get_by_id(submission_id)
        note = {
            "content": content,
            "added_by": author_id,
            "added_at": utcnow().isoformat(),
        }
        # Reassign so the JSON column is flagged dirty
        submission.notes = list(submission.notes or []) + [note]

        self._commit("append note")
        self.db.refresh(submission)
        return submission

    def bulk_update(self, ids: Iterable[str], patch: Dict[str, Any]) -> int:
        """
        Apply the same partial update to every listed submission.

        Each record is committed on its own; a failure on one record is logged
        and does not roll back records already written. Returns the number of
        records modified.
        """
        if not isinstance(patch, dict) or not patch:
            raise ValidationError("Invalid request: updates object required")

        patch = {k: v for k, v in patch.items() if k != "quality_score"}
        unknown = sorted(set(patch) - PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be bulk updated: {', '.join(unknown)}")
        patch = normalize_patch(patch)

        ids = list(dict.fromkeys(ids))
        submissions = self.db.query(SubmissionDB).filter(SubmissionDB.id.in_(ids)).all() if ids else []

        modified = 0
        for submission in submissions:
            changed = False
            for key, value in patch.items():
                if getattr(submission, key) != value:
                    setattr(submission, key, value)
                    changed = True
            if not changed:
                continue
            rescore(submission)
            try:
                self.db.commit()
                modified += 1
            except SQLAlchemyError:
                self.db.rollback()
                logger.exception(f"Bulk update failed for submission {submission.id}")

        logger.info(f"Bulk update modified {modified} of {len(ids)} submissions")
        return modified

    def soft_delete(self, submission_id: str, actor_id: str) -> SubmissionDB:
        """Mark deleted with timestamp and actor; the row is never removed."""
        submission = self.get_by_id(submission_id)
        submission.status = SubmissionStatus.DELETED.value
        submission.deleted_at = utcnow()
        submission.deleted_by = actor_id

        self._commit("soft delete")
        self.db.refresh(submission)
        logger.info(f"Submission {submission_id} deleted by {actor_id}")
        return submission

    # =========================================================================
    # READS
    # =========================================================================

    def get_by_id(self, submission_id: str) -> SubmissionDB:
        submission = self.db.query(SubmissionDB).filter(SubmissionDB.id == submission_id).first()
        if submission is None:
            raise NotFoundError("Submission not found")
        return submission

    def find(
        self,
        filters: Optional[SubmissionFilters] = None,
        sort_by: str = DEFAULT_SORT,
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Page:
        """Filtered, sorted page of submissions. Pages beyond the end are empty."""
        if page < 1:
            raise ValidationError("page must be >= 1")
        if limit < 1:
            raise ValidationError("limit must be > 0")

        query = self._filtered(filters or SubmissionFilters())
        total = query.count()

        column = SORTABLE_FIELDS.get(sort_by, SORTABLE_FIELDS[DEFAULT_SORT])
        ordering = asc(column) if sort_order == "asc" else desc(column)

        offset = (page - 1) * limit
        items = query.order_by(ordering, SubmissionDB.id).offset(offset).limit(limit).all()
        return Page(items=items, total=total, page=page, limit=limit)

    def iter_for_export(self, filters: Optional[SubmissionFilters] = None) -> List[SubmissionDB]:
        """Every matching submission, newest first."""
        return self._filtered(filters or SubmissionFilters()).order_by(
            desc(SubmissionDB.submission_date)
        ).all()

    def recent(self, days: int = 7, limit: int = 10) -> List[SubmissionDB]:
        start = utcnow() - timedelta(days=days)
        return self.db.query(SubmissionDB).filter(
            SubmissionDB.submission_date >= start
        ).order_by(desc(SubmissionDB.submission_date)).limit(limit).all()

    def location_stats(self, days: int = 30, limit: int = 100) -> List[Dict[str, Any]]:
        """Counts per (country, region, city), excluding unresolved countries."""
        start = utcnow() - timedelta(days=days)
        rows = self.db.query(
            SubmissionDB.geo_country,
            SubmissionDB.geo_region,
            SubmissionDB.geo_city,
            func.count(SubmissionDB.id).label("count"),
            func.avg(SubmissionDB.quality_score).label("avg_quality"),
            func.min(SubmissionDB.geo_latitude).label("lat"),
            func.min(SubmissionDB.geo_longitude).label("lng"),
        ).filter(
            SubmissionDB.submission_date >= start,
            SubmissionDB.geo_country != UNKNOWN,
        ).group_by(
            SubmissionDB.geo_country, SubmissionDB.geo_region, SubmissionDB.geo_city
        ).order_by(desc("count")).limit(limit).all()

        return [
            {
                "location": {"country": country, "region": region, "city": city},
                "count": count,
                "avgQuality": round(float(avg_quality or 0), 1),
                "coordinates": {"lat": lat or 0.0, "lng": lng or 0.0},
            }
            for country, region, city, count, avg_quality, lat, lng in rows
        ]

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _filtered(self, filters: SubmissionFilters):
        query = self.db.query(SubmissionDB)

        if filters.search:
            term = f"%{escape_like(filters.search)}%"
            query = query.filter(
                or_(
                    SubmissionDB.fname.ilike(term, escape=LIKE_ESCAPE),
                    SubmissionDB.lname.ilike(term, escape=LIKE_ESCAPE),
                    SubmissionDB.email.ilike(term, escape=LIKE_ESCAPE),
                    SubmissionDB.phone.ilike(term, escape=LIKE_ESCAPE),
                    SubmissionDB.geo_city.ilike(term, escape=LIKE_ESCAPE),
                    SubmissionDB.geo_region.ilike(term, escape=LIKE_ESCAPE),
                )
            )
        if filters.status:
            query = query.filter(SubmissionDB.status == filters.status)
        if filters.country:
            query = query.filter(SubmissionDB.geo_country == filters.country)
        if filters.date_from:
            query = query.filter(SubmissionDB.submission_date >= filters.date_from)
        if filters.date_to:
            query = query.filter(SubmissionDB.submission_date <= filters.date_to)

        return query

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(f"Failed to {action}")
            raise PersistenceError(f"Failed to {action}: {e}") from e
