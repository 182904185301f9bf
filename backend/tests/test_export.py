"""Tests for CSV and Excel export rendering."""
import csv
import io
from datetime import datetime

from openpyxl import load_workbook

from leadtracker.services.export import (
    HEADERS, export_filename, export_rows, to_csv, to_xlsx,
)
from leadtracker.services.submission_store import SubmissionStore

from conftest import full_record


def _rows(db, **overrides):
    submission = SubmissionStore(db).insert(full_record(**overrides))
    return export_rows([submission])


class TestCsvExport:

    def test_header_and_values(self, db):
        data = to_csv(_rows(db))
        reader = list(csv.reader(io.StringIO(data.decode("utf-8"))))
        assert reader[0] == HEADERS
        row = dict(zip(reader[0], reader[1]))
        assert row["First Name"] == "Jane"
        assert row["Date of Birth"] == "1990-01-02"
        assert row["Incident Date"] == "2021-06-01"
        assert row["Country"] == "United States"
        assert row["Quality Score"] == "100"
        assert row["Status"] == "pending"

    def test_formula_cells_are_escaped(self, db):
        data = to_csv(_rows(db, fname="=HYPERLINK(\"x\")", lname="+1"))
        row = list(csv.reader(io.StringIO(data.decode("utf-8"))))[1]
        assert row[1].startswith("'=")
        assert row[2] == "'+1"

    def test_empty_export_has_header_only(self):
        lines = to_csv([]).decode("utf-8").splitlines()
        assert len(lines) == 1


class TestExcelExport:

    def test_workbook_layout(self, db):
        workbook = load_workbook(io.BytesIO(to_xlsx(_rows(db))))
        sheet = workbook["Submissions"]
        assert [cell.value for cell in sheet[1]] == HEADERS
        assert sheet["A1"].font.bold
        assert sheet.max_row == 2
        assert sheet["B2"].value == "Jane"
        assert sheet.column_dimensions["A"].width == 38

    def test_filename(self):
        name = export_filename("xlsx", datetime(2026, 1, 2, 3, 4, 5))
        assert name == "submissions_2026-01-02T03-04-05.xlsx"
