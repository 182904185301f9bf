"""Lead Tracker - Services"""
from .scoring import calculate_quality_score
from .submission_store import SubmissionStore, SubmissionFilters, Page
from .analytics import AnalyticsAggregator, compute_funnel
from .geolocation import GeoLocator
from .ingestion import IngestionService, IngestionResult
from .auth_service import AuthService

__all__ = [
    "calculate_quality_score",
    "SubmissionStore", "SubmissionFilters", "Page",
    "AnalyticsAggregator", "compute_funnel",
    "GeoLocator",
    "IngestionService", "IngestionResult",
    "AuthService",
]
