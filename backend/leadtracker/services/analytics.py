"""
Analytics Aggregator

Dashboard statistics over a lookback window of `days`:
- totals (all time, window, today) and the high-quality rate
- grouped counts by country, device, status, browser and hour of day
- daily series, average quality, top locations
- status funnel and map clusters

Every aggregation tolerates an empty window and returns zero/empty values.
"""
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import and_, desc, func
from sqlalchemy.orm import Session

from ..models.db_models import SubmissionDB, utcnow
from ..models.records import SubmissionStatus, UNKNOWN
from .scoring import HIGH_QUALITY_THRESHOLD

logger = logging.getLogger(__name__)

FUNNEL_STAGES = (
    SubmissionStatus.PENDING.value,
    SubmissionStatus.PROCESSED.value,
    SubmissionStatus.CONTACTED.value,
    SubmissionStatus.QUALIFIED.value,
)
TOP_BROWSERS = 5
TOP_LOCATIONS = 10
EMBEDDED_SUBMISSIONS = 10
RECENT_SUBMISSIONS = 5


def compute_funnel(
    stage_counts: Mapping[str, int],
    avg_quality: Optional[Mapping[str, float]] = None,
) -> List[Dict[str, Any]]:
    """
    Funnel stages in fixed order with conversion rates.

    The rate is this stage's population over the previous stage's population,
    not the progression of the same leads; the first stage is always 100.
    """
    avg_quality = avg_quality or {}
    funnel = []
    previous = None
    for index, stage in enumerate(FUNNEL_STAGES):
        count = int(stage_counts.get(stage, 0))
        if index == 0:
            rate = 100.0
        else:
            rate = round(count / previous * 100, 2) if previous else 0.0
        funnel.append({
            "status": stage,
            "count": count,
            "avgQuality": round(float(avg_quality.get(stage) or 0), 1),
            "conversionRate": rate,
        })
        previous = count
    return funnel


def _summary(submission: SubmissionDB) -> Dict[str, Any]:
    return {
        "id": submission.id,
        "name": submission.full_name,
        "email": submission.email,
        "status": submission.status,
        "quality_score": submission.quality_score,
        "city": submission.geo_city,
        "country": submission.geo_country,
        "submission_date": submission.submission_date.isoformat() if submission.submission_date else None,
    }


class AnalyticsAggregator:
    """Read-only aggregations over the submissions table."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    def dashboard(self, days: int = 30) -> Dict[str, Any]:
        now = utcnow()
        start = now - timedelta(days=days)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        total_all_time = self.db.query(func.count(SubmissionDB.id)).scalar() or 0
        total_period = self._count_since(start)
        total_today = self._count_since(today_start)

        high_quality = self.db.query(func.count(SubmissionDB.id)).filter(
            SubmissionDB.submission_date >= start,
            SubmissionDB.quality_score >= HIGH_QUALITY_THRESHOLD,
        ).scalar() or 0
        quality_rate = (high_quality / total_period * 100) if total_period > 0 else 0

        avg_quality = self.db.query(func.avg(SubmissionDB.quality_score)).filter(
            SubmissionDB.submission_date >= start
        ).scalar()

        return {
            "period": {
                "days": days,
                "startDate": start.isoformat(),
                "endDate": now.isoformat(),
            },
            "totals": {
                "allTime": total_all_time,
                "period": total_period,
                "today": total_today,
                "qualityRate": round(quality_rate),
            },
            "analytics": {
                "byCountry": self._grouped(SubmissionDB.geo_country, "country", start),
                "byDevice": self._grouped(SubmissionDB.device_type, "device", start),
                "byStatus": self._grouped(SubmissionDB.status, "status", start),
                "dailySubmissions": self.daily_counts(start),
                "avgQualityScore": round(float(avg_quality or 0), 1),
            },
            "additional": {
                "topLocations": self.top_locations(start),
                "browserStats": self._grouped(SubmissionDB.browser_family, "browser", start, limit=TOP_BROWSERS),
                "hourlyStats": self.hourly_counts(start),
                "recentSubmissions": [
                    _summary(s) for s in self.db.query(SubmissionDB).filter(
                        SubmissionDB.submission_date >= start
                    ).order_by(desc(SubmissionDB.submission_date)).limit(RECENT_SUBMISSIONS).all()
                ],
            },
        }

    def daily_counts(self, start: datetime) -> List[Dict[str, Any]]:
        """Submission counts per calendar date (YYYY-MM-DD), ascending."""
        counts = Counter(d.strftime("%Y-%m-%d") for d in self._dates_since(start))
        return [{"date": day, "count": counts[day]} for day in sorted(counts)]

    def hourly_counts(self, start: datetime) -> List[Dict[str, Any]]:
        """Submission counts per hour of day (0-23), ascending; empty hours omitted."""
        counts = Counter(d.hour for d in self._dates_since(start))
        return [{"hour": hour, "count": counts[hour]} for hour in sorted(counts)]

    def top_locations(self, start: datetime, limit: int = TOP_LOCATIONS) -> List[Dict[str, Any]]:
        """Countries by count with average quality and their most recent submissions."""
        rows = self.db.query(
            SubmissionDB.geo_country,
            func.count(SubmissionDB.id).label("count"),
            func.avg(SubmissionDB.quality_score).label("avg_quality"),
        ).filter(
            SubmissionDB.submission_date >= start,
            SubmissionDB.geo_country != UNKNOWN,
        ).group_by(SubmissionDB.geo_country).order_by(
            desc("count"), SubmissionDB.geo_country
        ).limit(min(limit, TOP_LOCATIONS)).all()

        locations = []
        for country, count, avg_quality in rows:
            recent = self.db.query(SubmissionDB).filter(
                SubmissionDB.submission_date >= start,
                SubmissionDB.geo_country == country,
            ).order_by(desc(SubmissionDB.submission_date)).limit(EMBEDDED_SUBMISSIONS).all()
            locations.append({
                "country": country,
                "count": count,
                "avgQuality": round(float(avg_quality or 0), 1),
                "submissions": [_summary(s) for s in recent],
            })
        return locations

    # =========================================================================
    # FUNNEL
    # =========================================================================

    def funnel(self, days: int = 30) -> Dict[str, Any]:
        start = utcnow() - timedelta(days=days)
        rows = self.db.query(
            SubmissionDB.status,
            func.count(SubmissionDB.id),
            func.avg(SubmissionDB.quality_score),
        ).filter(SubmissionDB.submission_date >= start).group_by(SubmissionDB.status).all()

        counts = {status: count for status, count, _ in rows}
        averages = {status: avg for status, _, avg in rows}
        stages = compute_funnel(counts, averages)

        return {
            "period": {"days": days, "startDate": start.isoformat()},
            "totalSubmissions": sum(stage["count"] for stage in stages),
            "funnel": stages,
        }

    # =========================================================================
    # MAP
    # =========================================================================

    def map_data(self, days: int = 30) -> List[Dict[str, Any]]:
        """Clusters by exact coordinates and place, largest first. A zero on either axis is an unresolved point."""
        start = utcnow() - timedelta(days=days)
        has_coordinates = and_(SubmissionDB.geo_latitude != 0, SubmissionDB.geo_longitude != 0)

        rows = self.db.query(
            SubmissionDB.geo_latitude,
            SubmissionDB.geo_longitude,
            SubmissionDB.geo_city,
            SubmissionDB.geo_region,
            SubmissionDB.geo_country,
            func.count(SubmissionDB.id).label("count"),
        ).filter(
            SubmissionDB.submission_date >= start,
            has_coordinates,
        ).group_by(
            SubmissionDB.geo_latitude,
            SubmissionDB.geo_longitude,
            SubmissionDB.geo_city,
            SubmissionDB.geo_region,
            SubmissionDB.geo_country,
        ).order_by(desc("count")).all()

        clusters = []
        for lat, lng, city, region, country, count in rows:
            members = self.db.query(SubmissionDB).filter(
                and_(
                    SubmissionDB.submission_date >= start,
                    SubmissionDB.geo_latitude == lat,
                    SubmissionDB.geo_longitude == lng,
                    SubmissionDB.geo_city == city,
                    SubmissionDB.geo_region == region,
                    SubmissionDB.geo_country == country,
                )
            ).order_by(desc(SubmissionDB.submission_date)).limit(EMBEDDED_SUBMISSIONS).all()
            clusters.append({
                "coordinates": {"lat": lat, "lng": lng},
                "location": {"city": city, "region": region, "country": country},
                "count": count,
                "submissions": [_summary(s) for s in members],
            })
        return clusters

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _count_since(self, start: datetime) -> int:
        return self.db.query(func.count(SubmissionDB.id)).filter(
            SubmissionDB.submission_date >= start
        ).scalar() or 0

    def _dates_since(self, start: datetime) -> List[datetime]:
        return [
            row[0] for row in self.db.query(SubmissionDB.submission_date).filter(
                SubmissionDB.submission_date >= start
            ).all()
        ]

    def _grouped(self, column, label: str, start: datetime, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        query = self.db.query(column, func.count(SubmissionDB.id).label("count")).filter(
            SubmissionDB.submission_date >= start
        ).group_by(column).order_by(desc("count"), column)
        if limit:
            query = query.limit(limit)
        return [{label: value, "count": count} for value, count in query.all()]
