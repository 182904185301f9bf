"""
Quality Scorer

Additive completeness/trust points for a submission, capped at 100.

    Form completion (40)      names, email, phone, full address
    Additional details (30)   date of birth, incident date, gender
    Technical quality (30)    trusted form cert, resolved country, human UA

Pure and total: the same field values always yield the same score.
"""
from ..models.records import SubmissionRecord, UNKNOWN

MAX_SCORE = 100
HIGH_QUALITY_THRESHOLD = 80


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _digit_count(value: str) -> int:
    return sum(1 for ch in value if ch.isdigit())


def calculate_quality_score(record: SubmissionRecord) -> int:
    """Score a submission 0-100 from its current field values."""
    score = 0

    # Basic form completion
    if _present(record.fname) and _present(record.lname):
        score += 10
    if _present(record.email) and "@" in record.email:
        score += 10
    if _present(record.phone) and _digit_count(record.phone) >= 10:
        score += 10
    if all(_present(v) for v in (record.address, record.city, record.state, record.zip)):
        score += 10

    # Additional details
    if _present(record.date_of_birth):
        score += 10
    if _present(record.diagnosis_year):
        score += 10
    if _present(record.gender):
        score += 10

    # Technical quality
    if _present(record.trusted_form_cert_url):
        score += 15
    country = record.geolocation.country if record.geolocation else None
    if _present(country) and country != UNKNOWN:
        score += 10
    if _present(record.user_agent) and "bot" not in record.user_agent:
        score += 5

    return min(score, MAX_SCORE)
