"""Lead Tracker - Data Models"""
from .records import (
    # Enums and sentinels
    SubmissionStatus, DeviceType, GENDERS, UNKNOWN, LOOPBACK_IP,
    # Canonical record
    Geolocation, BrowserInfo, OSInfo, DeviceInfo, SubmissionRecord,
)
from .db_models import UserRole, UserDB, SubmissionDB, utcnow

__all__ = [
    "SubmissionStatus", "DeviceType", "GENDERS", "UNKNOWN", "LOOPBACK_IP",
    "Geolocation", "BrowserInfo", "OSInfo", "DeviceInfo", "SubmissionRecord",
    "UserRole", "UserDB", "SubmissionDB", "utcnow",
]
