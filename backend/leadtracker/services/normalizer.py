"""
Ingestion Normalizer

Turns an untrusted form body plus request metadata into a canonical
SubmissionRecord:

- validated intermediate (RawFormSubmission) with typed optional fields
- trimmed strings, lowercased email, uppercased state, digits-only phone
- lenient dates (MM/DD/YYYY, then generic parsing, then "now")
- user-agent parsing and device classification
- client IP extraction from proxy headers
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, field_validator
from user_agents import parse as parse_user_agent_string

from ..errors import ValidationError
from ..models.db_models import utcnow
from ..models.records import (
    SubmissionRecord, Geolocation, BrowserInfo, OSInfo, DeviceInfo, DeviceType,
    GENDERS, UNKNOWN, LOOPBACK_IP, PENDING_TRUSTED_FORM_CERT, DEFAULT_CASE_TYPE,
)

logger = logging.getLogger(__name__)


# Tablet tokens are checked first so "ipad" is never classified as mobile
TABLET_PATTERN = re.compile(r"tablet|ipad", re.IGNORECASE)
MOBILE_PATTERN = re.compile(r"mobile|android|iphone|ipod|blackberry|opera mini|iemobile", re.IGNORECASE)
NON_DIGITS = re.compile(r"\D")


# =============================================================================
# VALIDATED INTERMEDIATE
# =============================================================================

class RawFormSubmission(BaseModel):
    """Known form keys, all optional strings. Unknown keys are dropped."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    fname: Optional[str] = None
    lname: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[str] = None
    diagnosis_year: Optional[str] = None

    xxTrustedFormCertUrl: Optional[str] = None
    Trusted_Form_Alt: Optional[str] = None
    trusted_form_cert_url: Optional[str] = None
    case_type: Optional[str] = None
    ownerid: Optional[str] = None
    campaign: Optional[str] = None
    offer_url: Optional[str] = None

    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    page_views: Optional[str] = None
    time_on_page: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def coerce_scalar(cls, v):
        # Numbers and booleans arrive from JSON forms; nested objects are not form fields
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (int, float, bool)):
            return str(v)
        return None


@dataclass
class RequestMeta:
    """Transport details the normalizer needs from the incoming request."""
    headers: Dict[str, str] = field(default_factory=dict)  # lowercased keys
    client_host: Optional[str] = None

    @classmethod
    def build(cls, headers: Mapping[str, str], client_host: Optional[str]) -> "RequestMeta":
        return cls(headers={k.lower(): v for k, v in headers.items()}, client_host=client_host)

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def referer(self) -> str:
        return self.headers.get("referer", "")


def extract_form_body(body: Any) -> Dict[str, Any]:
    """Accept an object or a single-element array of objects."""
    if isinstance(body, list):
        if not body:
            raise ValidationError("Submission body is empty")
        body = body[0]
    if not isinstance(body, dict):
        raise ValidationError("Submission body must be a JSON object")
    return body


def parse_form(body: Any) -> RawFormSubmission:
    return RawFormSubmission.model_validate(extract_form_body(body))


# =============================================================================
# FIELD NORMALIZERS
# =============================================================================

def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_email(value: Optional[str]) -> Optional[str]:
    value = clean_text(value)
    return value.lower() if value else None


def normalize_state(value: Optional[str]) -> Optional[str]:
    value = clean_text(value)
    return value.upper() if value else None


def normalize_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    digits = NON_DIGITS.sub("", value)
    return digits or None


def normalize_gender(value: Optional[str]) -> str:
    """Capitalize the first letter, lowercase the rest; anything unrecognized is Other."""
    value = clean_text(value)
    if not value:
        return "Other"
    value = value[0].upper() + value[1:].lower()
    return value if value in GENDERS else "Other"


def parse_date(value: Optional[str], now: Optional[datetime] = None) -> datetime:
    """MM/DD/YYYY first, then generic parsing. Unparseable or absent dates become now."""
    fallback = now or utcnow()
    value = clean_text(value)
    if not value:
        return fallback

    try:
        return datetime.strptime(value, "%m/%d/%Y")
    except ValueError:
        pass

    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError):
        logger.debug(f"Unparseable date {value!r}, defaulting to now")
        return fallback

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _to_int(value: Optional[str], default: Optional[int]) -> Optional[int]:
    value = clean_text(value)
    if value is None:
        return default
    try:
        return int(float(value))
    except ValueError:
        return default


# =============================================================================
# REQUEST METADATA
# =============================================================================

def extract_client_ip(meta: RequestMeta) -> str:
    """Forwarded-for, then real-ip, then the socket address; IPv6 prefix stripped."""
    forwarded = meta.headers.get("x-forwarded-for", "")
    candidate = forwarded.split(",")[0].strip() if forwarded else ""
    if not candidate:
        candidate = meta.headers.get("x-real-ip", "").strip()
    if not candidate:
        candidate = (meta.client_host or "").strip()
    if not candidate:
        return LOOPBACK_IP

    # "::ffff:10.0.0.1" -> "10.0.0.1"
    candidate = candidate.rsplit(":", 1)[-1]
    return candidate or LOOPBACK_IP


def classify_device(user_agent: str) -> str:
    if not user_agent:
        return DeviceType.DESKTOP.value
    if TABLET_PATTERN.search(user_agent):
        return DeviceType.TABLET.value
    if MOBILE_PATTERN.search(user_agent):
        return DeviceType.MOBILE.value
    return DeviceType.DESKTOP.value


def _version_parts(version: tuple, version_string: str) -> tuple:
    major = str(version[0]) if version else UNKNOWN
    return (version_string or UNKNOWN, major)


def parse_user_agent(user_agent: str) -> tuple:
    """Returns (BrowserInfo, OSInfo, DeviceInfo) for a raw user-agent string."""
    device_type = classify_device(user_agent)
    if not user_agent:
        return BrowserInfo(), OSInfo(), DeviceInfo(type=device_type)

    ua = parse_user_agent_string(user_agent)
    browser_version, browser_major = _version_parts(ua.browser.version, ua.browser.version_string)
    os_version, os_major = _version_parts(ua.os.version, ua.os.version_string)
    return (
        BrowserInfo(family=ua.browser.family or UNKNOWN, version=browser_version, major=browser_major),
        OSInfo(family=ua.os.family or UNKNOWN, version=os_version, major=os_major),
        DeviceInfo(family=ua.device.family or UNKNOWN, type=device_type),
    )


# =============================================================================
# RECORD BUILDERS
# =============================================================================

def normalize_submission(
    form: RawFormSubmission,
    meta: RequestMeta,
    ip_address: str,
    geolocation: Geolocation,
    default_owner_id: str = "",
    now: Optional[datetime] = None,
) -> SubmissionRecord:
    """Build the canonical record for an enriched submission."""
    now = now or utcnow()
    user_agent = meta.user_agent
    browser_info, os_info, device_info = parse_user_agent(user_agent)

    trusted_form = (
        clean_text(form.xxTrustedFormCertUrl)
        or clean_text(form.Trusted_Form_Alt)
        or clean_text(form.trusted_form_cert_url)
        or PENDING_TRUSTED_FORM_CERT
    )

    return SubmissionRecord(
        fname=clean_text(form.fname),
        lname=clean_text(form.lname),
        email=normalize_email(form.email),
        phone=normalize_phone(form.phone),
        address=clean_text(form.address),
        city=clean_text(form.city),
        state=normalize_state(form.state),
        zip=clean_text(form.zip),
        gender=normalize_gender(form.gender),
        date_of_birth=parse_date(form.date_of_birth, now),
        diagnosis_year=parse_date(form.diagnosis_year, now),
        ip_address=ip_address,
        user_agent=user_agent,
        browser_info=browser_info,
        os_info=os_info,
        device_info=device_info,
        geolocation=geolocation,
        trusted_form_cert_url=trusted_form,
        case_type=clean_text(form.case_type) or DEFAULT_CASE_TYPE,
        ownerid=clean_text(form.ownerid) or default_owner_id,
        campaign=clean_text(form.campaign) or "",
        offer_url=clean_text(form.offer_url) or meta.referer,
        referrer=meta.referer,
        utm_source=clean_text(form.utm_source) or "",
        utm_medium=clean_text(form.utm_medium) or "",
        utm_campaign=clean_text(form.utm_campaign) or "",
        page_views=_to_int(form.page_views, 1),
        time_on_page=_to_int(form.time_on_page, None),
        submission_date=now,
    )


def build_minimal_record(body: Any, meta: RequestMeta, now: Optional[datetime] = None) -> SubmissionRecord:
    """Directly submitted fields plus sentinel technical metadata.

    Used when enriched processing fails; only plain string handling happens here.
    """
    now = now or utcnow()
    raw = body[0] if isinstance(body, list) and body else body
    if not isinstance(raw, dict):
        raw = {}

    def text(key: str) -> Optional[str]:
        value = raw.get(key)
        if value is None or isinstance(value, (dict, list)):
            return None
        return clean_text(str(value))

    return SubmissionRecord(
        fname=text("fname"),
        lname=text("lname"),
        email=text("email"),
        phone=text("phone"),
        address=text("address"),
        city=text("city"),
        state=text("state"),
        zip=text("zip"),
        gender=normalize_gender(text("gender")),
        date_of_birth=parse_date(text("date_of_birth"), now),
        diagnosis_year=parse_date(text("diagnosis_year"), now),
        ip_address=(meta.client_host or LOOPBACK_IP),
        user_agent=meta.user_agent,
        geolocation=Geolocation(),
        trusted_form_cert_url=text("xxTrustedFormCertUrl") or "",
        submission_date=now,
    )
