"""
Lead Tracker - SQLAlchemy ORM Models
Database models for persistent storage
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import Column, String, Integer, Float, DateTime, Text, JSON, Boolean

from ..database import Base
from .records import (
    SubmissionRecord, SubmissionStatus, Geolocation, BrowserInfo, OSInfo, DeviceInfo,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """Dashboard roles; permissions are derived from these."""
    ADMIN = "admin"
    MANAGER = "manager"
    ANALYST = "analyst"


class UserDB(Base):
    """Dashboard user account."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.ANALYST.value)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime, nullable=True)

    # Derived from role at the write boundary, see auth.permissions_for_role
    permissions = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        """Public view of the user. The password hash is never included."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "isActive": bool(self.is_active),
            "permissions": dict(self.permissions or {}),
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class SubmissionDB(Base):
    """Captured lead submission with enrichment metadata."""
    __tablename__ = "submissions"

    id = Column(String(36), primary_key=True)  # UUID

    # ==========================================================================
    # FORM DATA
    # ==========================================================================
    fname = Column(String(100), nullable=True)
    lname = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(30), nullable=True, index=True)
    address = Column(String(255), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    zip = Column(String(20), nullable=True)
    gender = Column(String(10), nullable=True)
    date_of_birth = Column(DateTime, nullable=True)
    diagnosis_year = Column(DateTime, nullable=True)  # Incident date on exports

    # ==========================================================================
    # TECHNICAL DATA
    # ==========================================================================
    ip_address = Column(String(64), nullable=False, default="127.0.0.1")
    user_agent = Column(Text, nullable=False, default="")
    browser_info = Column(JSON, nullable=False, default=dict)  # {family, version, major}
    os_info = Column(JSON, nullable=False, default=dict)  # {family, version, major}
    device_info = Column(JSON, nullable=False, default=dict)  # {family, type}

    # Flat columns so the family/type can be grouped without JSON operators
    browser_family = Column(String(100), nullable=False, default="Unknown", index=True)
    device_type = Column(String(20), nullable=False, default="desktop", index=True)

    # ==========================================================================
    # GEOLOCATION
    # ==========================================================================
    geo_country = Column(String(100), nullable=False, default="Unknown", index=True)
    geo_country_code = Column(String(8), nullable=False, default="XX")
    geo_region = Column(String(100), nullable=False, default="Unknown", index=True)
    geo_region_code = Column(String(16), nullable=False, default="")
    geo_city = Column(String(100), nullable=False, default="Unknown")
    geo_zip = Column(String(20), nullable=False, default="")
    geo_latitude = Column(Float, nullable=False, default=0.0)
    geo_longitude = Column(Float, nullable=False, default=0.0)
    geo_timezone = Column(String(64), nullable=False, default="")
    geo_isp = Column(String(255), nullable=False, default="")
    geo_org = Column(String(255), nullable=False, default="")

    # ==========================================================================
    # PROVENANCE
    # ==========================================================================
    trusted_form_cert_url = Column(String(500), nullable=False, default="")
    case_type = Column(String(100), nullable=False, default="Rideshare")
    ownerid = Column(String(64), nullable=False, default="")
    campaign = Column(String(255), nullable=False, default="")
    offer_url = Column(String(1000), nullable=False, default="")
    referrer = Column(String(1000), nullable=False, default="")

    utm_source = Column(String(255), nullable=False, default="")
    utm_medium = Column(String(255), nullable=False, default="")
    utm_campaign = Column(String(255), nullable=False, default="")
    page_views = Column(Integer, nullable=False, default=1)
    time_on_page = Column(Integer, nullable=True)  # seconds

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================
    submission_date = Column(DateTime, nullable=False, default=utcnow, index=True)
    processed = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=SubmissionStatus.PENDING.value, index=True)
    quality_score = Column(Integer, nullable=False, default=0, index=True)
    notes = Column(JSON, nullable=False, default=list)  # [{content, added_by, added_at}]
    deleted_at = Column(DateTime, nullable=True)
    deleted_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.fname or ''} {self.lname or ''}".strip()

    @property
    def full_address(self) -> str:
        return f"{self.address or ''}, {self.city or ''}, {self.state or ''} {self.zip or ''}".strip()

    @classmethod
    def from_record(cls, record: SubmissionRecord) -> "SubmissionDB":
        """Build a row from a normalized record. Score and id are assigned by the store."""
        geo = record.geolocation
        return cls(
            fname=record.fname,
            lname=record.lname,
            email=record.email,
            phone=record.phone,
            address=record.address,
            city=record.city,
            state=record.state,
            zip=record.zip,
            gender=record.gender,
            date_of_birth=record.date_of_birth,
            diagnosis_year=record.diagnosis_year,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            browser_info=vars(record.browser_info).copy(),
            os_info=vars(record.os_info).copy(),
            device_info=vars(record.device_info).copy(),
            browser_family=record.browser_info.family,
            device_type=record.device_info.type,
            geo_country=geo.country,
            geo_country_code=geo.country_code,
            geo_region=geo.region,
            geo_region_code=geo.region_code,
            geo_city=geo.city,
            geo_zip=geo.zip,
            geo_latitude=geo.latitude,
            geo_longitude=geo.longitude,
            geo_timezone=geo.timezone,
            geo_isp=geo.isp,
            geo_org=geo.org,
            trusted_form_cert_url=record.trusted_form_cert_url,
            case_type=record.case_type,
            ownerid=record.ownerid,
            campaign=record.campaign,
            offer_url=record.offer_url,
            referrer=record.referrer,
            utm_source=record.utm_source,
            utm_medium=record.utm_medium,
            utm_campaign=record.utm_campaign,
            page_views=record.page_views,
            time_on_page=record.time_on_page,
            submission_date=record.submission_date or utcnow(),
            processed=False,
            status=SubmissionStatus.PENDING.value,
            notes=[],
        )

    def to_record(self) -> SubmissionRecord:
        """Current field values as a canonical record, for rescoring."""
        return SubmissionRecord(
            fname=self.fname,
            lname=self.lname,
            email=self.email,
            phone=self.phone,
            address=self.address,
            city=self.city,
            state=self.state,
            zip=self.zip,
            gender=self.gender,
            date_of_birth=self.date_of_birth,
            diagnosis_year=self.diagnosis_year,
            ip_address=self.ip_address or "",
            user_agent=self.user_agent or "",
            browser_info=BrowserInfo(**(self.browser_info or {})),
            os_info=OSInfo(**(self.os_info or {})),
            device_info=DeviceInfo(**(self.device_info or {})),
            geolocation=Geolocation(
                country=self.geo_country,
                country_code=self.geo_country_code,
                region=self.geo_region,
                region_code=self.geo_region_code,
                city=self.geo_city,
                zip=self.geo_zip,
                latitude=self.geo_latitude,
                longitude=self.geo_longitude,
                timezone=self.geo_timezone,
                isp=self.geo_isp,
                org=self.geo_org,
            ),
            trusted_form_cert_url=self.trusted_form_cert_url or "",
            case_type=self.case_type or "",
            ownerid=self.ownerid or "",
            campaign=self.campaign or "",
            offer_url=self.offer_url or "",
            referrer=self.referrer or "",
            utm_source=self.utm_source or "",
            utm_medium=self.utm_medium or "",
            utm_campaign=self.utm_campaign or "",
            page_views=self.page_views or 1,
            time_on_page=self.time_on_page,
            submission_date=self.submission_date,
        )

    def to_dict(self) -> dict:
        """JSON view returned by the submissions API."""
        return {
            "id": self.id,
            "fname": self.fname,
            "lname": self.lname,
            "fullName": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "fullAddress": self.full_address,
            "gender": self.gender,
            "date_of_birth": _iso(self.date_of_birth),
            "diagnosis_year": _iso(self.diagnosis_year),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "browser_info": dict(self.browser_info or {}),
            "os_info": dict(self.os_info or {}),
            "device_info": dict(self.device_info or {}),
            "geolocation": {
                "country": self.geo_country,
                "country_code": self.geo_country_code,
                "region": self.geo_region,
                "region_code": self.geo_region_code,
                "city": self.geo_city,
                "zip": self.geo_zip,
                "latitude": self.geo_latitude,
                "longitude": self.geo_longitude,
                "timezone": self.geo_timezone,
                "isp": self.geo_isp,
                "org": self.geo_org,
            },
            "trusted_form_cert_url": self.trusted_form_cert_url,
            "case_type": self.case_type,
            "ownerid": self.ownerid,
            "campaign": self.campaign,
            "offer_url": self.offer_url,
            "referrer": self.referrer,
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
            "page_views": self.page_views,
            "time_on_page": self.time_on_page,
            "submission_date": _iso(self.submission_date),
            "processed": bool(self.processed),
            "status": self.status,
            "quality_score": self.quality_score,
            "notes": list(self.notes or []),
            "deleted_at": _iso(self.deleted_at),
            "deleted_by": self.deleted_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


def _iso(value):
    return value.isoformat() if value else None
