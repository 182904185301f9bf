"""
Tests for the quality scorer.

Covers the bucket weights, the 0 and 100 bounds, and determinism.
"""
from dataclasses import replace
from datetime import datetime

import pytest

from leadtracker.models.records import Geolocation, SubmissionRecord
from leadtracker.services.scoring import calculate_quality_score

from conftest import full_record


class TestQualityScore:
    """Tests for calculate_quality_score."""

    def test_all_fields_scores_100(self):
        assert calculate_quality_score(full_record()) == 100

    def test_empty_record_scores_0(self):
        assert calculate_quality_score(SubmissionRecord()) == 0

    def test_score_is_deterministic(self):
        record = full_record(phone=None, gender=None)
        assert calculate_quality_score(record) == calculate_quality_score(replace(record))

    @pytest.mark.parametrize("overrides,expected", [
        ({"lname": None}, 90),
        ({"email": "not-an-email"}, 90),
        ({"phone": "555123456"}, 90),  # 9 digits
        ({"zip": "  "}, 90),
        ({"date_of_birth": None}, 90),
        ({"diagnosis_year": None}, 90),
        ({"gender": None}, 90),
        ({"trusted_form_cert_url": ""}, 85),
        ({"geolocation": Geolocation()}, 90),
        ({"user_agent": "Googlebot/2.1"}, 95),
        ({"user_agent": ""}, 95),
    ])
    def test_each_bucket_weight(self, overrides, expected):
        assert calculate_quality_score(full_record(**overrides)) == expected

    def test_phone_digits_counted_not_length(self):
        record = full_record(phone="(555) 123-456")
        assert calculate_quality_score(record) == 90

    def test_single_bucket(self):
        record = SubmissionRecord(trusted_form_cert_url="https://cert.trustedform.com/x")
        assert calculate_quality_score(record) == 15

    def test_score_stays_in_bounds(self):
        records = [
            SubmissionRecord(),
            full_record(),
            SubmissionRecord(fname="A", lname="B", date_of_birth=datetime(2000, 1, 1)),
        ]
        for record in records:
            assert 0 <= calculate_quality_score(record) <= 100
