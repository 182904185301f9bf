"""
Tests for the ingestion pipeline.

Covers the enriched path, the minimal-record fallback, total failure and
the upstream forward.
"""
import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from leadtracker.errors import PersistenceError, ValidationError
from leadtracker.models.records import Geolocation
from leadtracker.services.geolocation import GeoLocator
from leadtracker.services.ingestion import IngestionService
from leadtracker.services.normalizer import RequestMeta
from leadtracker.services.submission_store import SubmissionStore

FORM = {
    "fname": "Jane",
    "lname": "Doe",
    "email": "JANE@example.com",
    "phone": "(555) 123-4567",
    "address": "1 Main St",
    "city": "Austin",
    "state": "tx",
    "zip": "73301",
    "gender": "female",
    "date_of_birth": "01/02/1990",
    "diagnosis_year": "06/01/2021",
    "xxTrustedFormCertUrl": "https://cert.trustedform.com/abc",
}
META = RequestMeta.build(
    {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Safari/537.36",
     "X-Forwarded-For": "203.0.113.7"},
    "10.0.0.1",
)


class FixedLocator(GeoLocator):
    def __init__(self, geolocation=None, error=None):
        super().__init__()
        self.geolocation = geolocation or Geolocation()
        self.error = error
        self.seen = []

    async def locate(self, ip):
        self.seen.append(ip)
        if self.error:
            raise self.error
        return self.geolocation


def _service(db, settings, locator=None, handler=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return IngestionService(db, settings, locator or FixedLocator(), http_client=client)


class TestIngest:

    def test_enriched_submission(self, db, settings):
        locator = FixedLocator(Geolocation(country="United States", city="Austin"))
        result = asyncio.run(_service(db, settings, locator).ingest(FORM, META))

        assert result.degraded is False
        assert locator.seen == ["203.0.113.7"]
        saved = SubmissionStore(db).get_by_id(result.submission_id)
        assert saved.email == "jane@example.com"
        assert saved.phone == "5551234567"
        assert saved.state == "TX"
        assert saved.gender == "Female"
        assert saved.ownerid == settings.default_owner_id
        assert saved.geo_country == "United States"
        assert saved.quality_score == result.quality_score == 100

    def test_array_body(self, db, settings):
        result = asyncio.run(_service(db, settings).ingest([FORM], META))
        assert SubmissionStore(db).get_by_id(result.submission_id).fname == "Jane"

    def test_shape_errors_are_not_downgraded(self, db, settings):
        with pytest.raises(ValidationError):
            asyncio.run(_service(db, settings).ingest("fname=Jane", META))
        assert SubmissionStore(db).find().total == 0

    def test_enrichment_failure_saves_minimal_record(self, db, settings):
        locator = FixedLocator(error=RuntimeError("geo exploded"))
        result = asyncio.run(_service(db, settings, locator).ingest(FORM, META))

        assert result.degraded is True
        saved = SubmissionStore(db).get_by_id(result.submission_id)
        assert saved.fname == "Jane"
        assert saved.email == "JANE@example.com"
        assert saved.geo_country == "Unknown"
        assert saved.ip_address == "10.0.0.1"

    def test_unusable_geoip_database_keeps_normalization(self, db, settings, tmp_path):
        locator = GeoLocator(geoip_db_path=str(tmp_path / "missing.mmdb"))
        meta = RequestMeta.build(
            {"User-Agent": "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) Mobile/15E148 Safari/604.1"},
            "203.0.113.7",
        )
        body = {"email": " Foo@Bar.COM ", "phone": "(555) 123-4567", "state": "ca"}
        result = asyncio.run(_service(db, settings, locator).ingest(body, meta))

        assert result.degraded is False
        saved = SubmissionStore(db).get_by_id(result.submission_id)
        assert saved.email == "foo@bar.com"
        assert saved.phone == "5551234567"
        assert saved.state == "CA"
        assert saved.device_type == "tablet"
        assert saved.geo_country == "Unknown"

    def test_total_failure_raises(self, db, settings, monkeypatch):
        def broken_insert(self, record):
            raise RuntimeError("database gone")

        monkeypatch.setattr(SubmissionStore, "insert", broken_insert)
        with pytest.raises(PersistenceError):
            asyncio.run(_service(db, settings).ingest(FORM, META))


class TestForward:

    def test_forward_posts_original_body(self, db, settings):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"leadId": "L-1", "status": "OK"})

        settings = replace(settings, original_api_url="https://upstream.example.com/leads")
        result = asyncio.run(_service(db, settings, handler=handler).ingest(FORM, META))

        assert seen["url"] == "https://upstream.example.com/leads"
        assert seen["body"] == FORM
        assert result.upstream == {"leadId": "L-1", "status": "OK"}

    def test_forward_failure_is_ignored(self, db, settings):
        def handler(request):
            return httpx.Response(503)

        settings = replace(settings, original_api_url="https://upstream.example.com/leads")
        result = asyncio.run(_service(db, settings, handler=handler).ingest(FORM, META))

        assert result.upstream == {}
        assert SubmissionStore(db).get_by_id(result.submission_id)

    def test_no_upstream_configured(self, db, settings):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        asyncio.run(_service(db, settings, handler=handler).ingest(FORM, META))
        assert calls == []
