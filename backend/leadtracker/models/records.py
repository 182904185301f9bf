"""
Lead Tracker - Canonical Submission Record

The normalizer produces these; the scorer and the store consume them.
Missing technical metadata is carried as sentinel strings rather than None
so grouping never breaks on absent keys.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


UNKNOWN = "Unknown"
UNKNOWN_COUNTRY_CODE = "XX"
LOOPBACK_IP = "127.0.0.1"
PENDING_TRUSTED_FORM_CERT = "https://cert.trustedform.com/pending"
DEFAULT_CASE_TYPE = "Rideshare"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    REJECTED = "rejected"
    DELETED = "deleted"


class DeviceType(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


GENDERS = ("Male", "Female", "Other")


@dataclass
class Geolocation:
    country: str = UNKNOWN
    country_code: str = UNKNOWN_COUNTRY_CODE
    region: str = UNKNOWN
    region_code: str = ""
    city: str = UNKNOWN
    zip: str = ""
    latitude: float = 0.0
    longitude: float = 0.0
    timezone: str = ""
    isp: str = ""
    org: str = ""


@dataclass
class BrowserInfo:
    family: str = UNKNOWN
    version: str = UNKNOWN
    major: str = UNKNOWN


@dataclass
class OSInfo:
    family: str = UNKNOWN
    version: str = UNKNOWN
    major: str = UNKNOWN


@dataclass
class DeviceInfo:
    family: str = UNKNOWN
    type: str = DeviceType.DESKTOP.value


@dataclass
class SubmissionRecord:
    """One captured lead with its enrichment metadata."""
    # Applicant fields
    fname: Optional[str] = None
    lname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    diagnosis_year: Optional[datetime] = None

    # Technical fields
    ip_address: str = LOOPBACK_IP
    user_agent: str = ""
    browser_info: BrowserInfo = field(default_factory=BrowserInfo)
    os_info: OSInfo = field(default_factory=OSInfo)
    device_info: DeviceInfo = field(default_factory=DeviceInfo)
    geolocation: Geolocation = field(default_factory=Geolocation)

    # Provenance
    trusted_form_cert_url: str = ""
    case_type: str = DEFAULT_CASE_TYPE
    ownerid: str = ""
    campaign: str = ""
    offer_url: str = ""
    referrer: str = ""

    # Marketing attribution
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""
    page_views: int = 1
    time_on_page: Optional[int] = None

    submission_date: Optional[datetime] = None
