"""
Lead Tracker - Service Errors

Raised by services; routers translate them into HTTP responses.
"""


class LeadTrackerError(Exception):
    """Base class for service operation failures."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LeadTrackerError):
    """Bad or missing field, or a value outside an allowed set."""
    status_code = 400


class AuthenticationError(LeadTrackerError):
    """Missing, invalid or expired credentials."""
    status_code = 401


class AuthorizationError(LeadTrackerError):
    """Authenticated identity lacks a permission or role."""
    status_code = 403


class NotFoundError(LeadTrackerError):
    """No such submission or user."""
    status_code = 404


class ExternalServiceDegraded(LeadTrackerError):
    """Enrichment call failed. Callers log it and continue with local data."""
    status_code = 502


class PersistenceError(LeadTrackerError):
    """Store write failed."""
    status_code = 500
