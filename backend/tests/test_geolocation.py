"""Tests for geolocation merging and the IPStack overlay."""
import asyncio

import httpx

from leadtracker.models.records import Geolocation
from leadtracker.services.geolocation import GeoLocator, merge_geolocation

IPSTACK_PAYLOAD = {
    "ip": "203.0.113.7",
    "country_name": "United States",
    "country_code": "US",
    "region_name": "Texas",
    "region_code": "TX",
    "city": "Austin",
    "zip": "73301",
    "latitude": 30.27,
    "longitude": -97.74,
    "time_zone": {"id": "America/Chicago"},
    "connection": {"isp": "Example ISP", "organization": "Example Org"},
}


def _locator(handler, api_key="key"):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeoLocator(ipstack_api_key=api_key, http_client=client)


class TestMergeGeolocation:

    def test_empty_sources_give_sentinels(self):
        assert merge_geolocation({}, {}) == Geolocation()

    def test_api_wins_per_field(self):
        merged = merge_geolocation(
            {"country": "Canada", "city": None},
            {"country": "United States", "city": "Austin", "region": "Texas"},
        )
        assert merged.country == "Canada"
        assert merged.city == "Austin"
        assert merged.region == "Texas"
        assert merged.country_code == "XX"

    def test_coordinates_are_floats(self):
        merged = merge_geolocation({"latitude": "30.5", "longitude": -97}, {})
        assert merged.latitude == 30.5
        assert merged.longitude == -97.0


class TestGeoLocator:

    def test_overlays_api_response(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json=IPSTACK_PAYLOAD)

        geo = asyncio.run(_locator(handler).locate("203.0.113.7"))
        assert "203.0.113.7" in seen["url"]
        assert "access_key=key" in seen["url"]
        assert geo.country == "United States"
        assert geo.region_code == "TX"
        assert geo.timezone == "America/Chicago"
        assert geo.isp == "Example ISP"
        assert geo.org == "Example Org"

    def test_api_error_falls_back(self):
        def handler(request):
            return httpx.Response(500)

        geo = asyncio.run(_locator(handler).locate("203.0.113.7"))
        assert geo == Geolocation()

    def test_api_success_false_falls_back(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": {"code": 101}})

        geo = asyncio.run(_locator(handler).locate("203.0.113.7"))
        assert geo.country == "Unknown"

    def test_loopback_skips_api(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=IPSTACK_PAYLOAD)

        geo = asyncio.run(_locator(handler).locate("127.0.0.1"))
        assert calls == []
        assert geo.country == "Unknown"

    def test_no_key_skips_api(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=IPSTACK_PAYLOAD)

        asyncio.run(_locator(handler, api_key=None).locate("203.0.113.7"))
        assert calls == []

    def test_offline_lookup_without_database(self):
        assert GeoLocator().lookup_offline("203.0.113.7") == {}

    def test_missing_database_file_is_skipped(self, tmp_path):
        locator = GeoLocator(geoip_db_path=str(tmp_path / "missing.mmdb"))
        assert locator.lookup_offline("203.0.113.7") == {}
        assert locator.lookup_offline("203.0.113.8") == {}
        assert asyncio.run(locator.locate("203.0.113.7")) == Geolocation()

    def test_corrupt_database_file_is_skipped(self, tmp_path):
        path = tmp_path / "corrupt.mmdb"
        path.write_bytes(b"definitely not a maxmind database")
        locator = GeoLocator(geoip_db_path=str(path))
        assert locator.lookup_offline("203.0.113.7") == {}
