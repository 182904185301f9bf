"""CSV and Excel renditions of a submission set."""
import csv
import io
from datetime import datetime
from typing import Any, Dict, Iterable, List

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill

from ..models.db_models import SubmissionDB, utcnow

CSV_MEDIA_TYPE = "text/csv"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header, width) in column order
EXPORT_COLUMNS = [
    ("ID", 38),
    ("First Name", 15),
    ("Last Name", 15),
    ("Email", 25),
    ("Phone", 15),
    ("Address", 30),
    ("City", 15),
    ("State", 8),
    ("ZIP", 10),
    ("Gender", 10),
    ("Date of Birth", 15),
    ("Incident Date", 15),
    ("Country", 15),
    ("Region", 15),
    ("IP Address", 15),
    ("Browser", 15),
    ("Device", 10),
    ("Status", 12),
    ("Quality Score", 12),
    ("Submission Date", 22),
    ("Trusted Form Cert", 40),
]
HEADERS = [header for header, _ in EXPORT_COLUMNS]

CSV_DANGEROUS_PREFIXES = ("=", "+", "-", "@")


def _csv_safe(value: Any) -> Any:
    if isinstance(value, str) and value.startswith(CSV_DANGEROUS_PREFIXES):
        return f"'{value}"
    return value


def _day(value: datetime) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def export_row(sub: SubmissionDB) -> Dict[str, Any]:
    return {
        "ID": sub.id,
        "First Name": sub.fname or "",
        "Last Name": sub.lname or "",
        "Email": sub.email or "",
        "Phone": sub.phone or "",
        "Address": sub.address or "",
        "City": sub.city or "",
        "State": sub.state or "",
        "ZIP": sub.zip or "",
        "Gender": sub.gender or "",
        "Date of Birth": _day(sub.date_of_birth),
        "Incident Date": _day(sub.diagnosis_year),
        "Country": sub.geo_country,
        "Region": sub.geo_region,
        "IP Address": sub.ip_address,
        "Browser": sub.browser_family,
        "Device": sub.device_type,
        "Status": sub.status,
        "Quality Score": sub.quality_score,
        "Submission Date": sub.submission_date.isoformat() if sub.submission_date else "",
        "Trusted Form Cert": sub.trusted_form_cert_url,
    }


def export_rows(submissions: Iterable[SubmissionDB]) -> List[Dict[str, Any]]:
    return [export_row(sub) for sub in submissions]


def to_csv(rows: List[Dict[str, Any]]) -> bytes:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=HEADERS)
    writer.writeheader()
    for row in rows:
        writer.writerow({key: _csv_safe(value) for key, value in row.items()})
    return output.getvalue().encode("utf-8")


def to_xlsx(rows: List[Dict[str, Any]]) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Submissions"

    sheet.append(HEADERS)
    header_font = Font(bold=True, color="FFFFFFFF")
    header_fill = PatternFill(fill_type="solid", fgColor="FF4472C4")
    for cell in sheet[1]:
        cell.font = header_font
        cell.fill = header_fill
    for cell, (_, width) in zip(sheet[1], EXPORT_COLUMNS):
        sheet.column_dimensions[cell.column_letter].width = width

    for row in rows:
        sheet.append([row[header] for header in HEADERS])

    output = io.BytesIO()
    workbook.save(output)
    return output.getvalue()


def export_filename(extension: str, now: datetime = None) -> str:
    timestamp = (now or utcnow()).strftime("%Y-%m-%dT%H-%M-%S")
    return f"submissions_{timestamp}.{extension}"
