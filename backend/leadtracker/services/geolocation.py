"""
Geolocation enrichment.

Starts from an offline MaxMind lookup, then overlays the IPStack API response
field by field when an API key is configured. API failures never abort
ingestion: they are logged and the offline data is used as-is.
"""
import logging
from typing import Any, Dict, Optional

import geoip2.database
import geoip2.errors
import httpx
import maxminddb

from ..errors import ExternalServiceDegraded
from ..models.records import Geolocation, LOOPBACK_IP, UNKNOWN, UNKNOWN_COUNTRY_CODE

logger = logging.getLogger(__name__)

IPSTACK_URL = "http://api.ipstack.com/{ip}"
IPSTACK_TIMEOUT_SECONDS = 5.0


class GeoLocator:
    """IP → location resolver with optional paid-API overlay."""

    def __init__(
        self,
        geoip_db_path: Optional[str] = None,
        ipstack_api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.geoip_db_path = geoip_db_path
        self.ipstack_api_key = ipstack_api_key
        self._http_client = http_client
        self._reader = None
        self._offline_disabled = False

    # =========================================================================
    # OFFLINE LOOKUP
    # =========================================================================

    def _get_reader(self):
        if self._reader is None and self.geoip_db_path and not self._offline_disabled:
            try:
                self._reader = geoip2.database.Reader(self.geoip_db_path)
            except (OSError, ValueError, maxminddb.InvalidDatabaseError) as e:
                self._disable_offline(f"cannot open {self.geoip_db_path}: {e}")
        return self._reader

    def _disable_offline(self, reason: str) -> None:
        # Warn once; later lookups skip the database entirely
        logger.warning(f"Offline geolocation disabled, {reason}")
        self._offline_disabled = True
        self.close()

    def lookup_offline(self, ip: str) -> Dict[str, Any]:
        """Offline lookup; empty dict when no usable database is configured or the IP is unknown."""
        reader = self._get_reader()
        if reader is None:
            return {}
        try:
            response = reader.city(ip)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return {}
        except (TypeError, maxminddb.InvalidDatabaseError) as e:
            # TypeError: the database is not a City database
            self._disable_offline(f"lookup failed: {e}")
            return {}

        subdivision = response.subdivisions.most_specific
        return {
            "country": response.country.name,
            "country_code": response.country.iso_code,
            "region": subdivision.name,
            "region_code": subdivision.iso_code,
            "city": response.city.name,
            "zip": response.postal.code,
            "latitude": response.location.latitude,
            "longitude": response.location.longitude,
            "timezone": response.location.time_zone,
        }

    # =========================================================================
    # IPSTACK OVERLAY
    # =========================================================================

    async def fetch_ipstack(self, ip: str) -> Dict[str, Any]:
        """Fetch and flatten the IPStack response. Raises ExternalServiceDegraded on failure."""
        url = IPSTACK_URL.format(ip=ip)
        params = {"access_key": self.ipstack_api_key}
        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, params=params, timeout=IPSTACK_TIMEOUT_SECONDS)
            else:
                async with httpx.AsyncClient(timeout=IPSTACK_TIMEOUT_SECONDS) as client:
                    response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceDegraded(f"IPStack request failed: {e}") from e

        if not isinstance(data, dict) or data.get("success") is False:
            error = data.get("error") if isinstance(data, dict) else None
            raise ExternalServiceDegraded(f"IPStack returned an error: {error}")

        time_zone = data.get("time_zone") or {}
        connection = data.get("connection") or {}
        return {
            "country": data.get("country_name"),
            "country_code": data.get("country_code"),
            "region": data.get("region_name"),
            "region_code": data.get("region_code"),
            "city": data.get("city"),
            "zip": data.get("zip"),
            "latitude": data.get("latitude"),
            "longitude": data.get("longitude"),
            "timezone": time_zone.get("id") if isinstance(time_zone, dict) else None,
            "isp": connection.get("isp") if isinstance(connection, dict) else None,
            "org": connection.get("organization") if isinstance(connection, dict) else None,
        }

    async def locate(self, ip: str) -> Geolocation:
        """Resolve an IP to a Geolocation, never raising for enrichment failures."""
        offline = self.lookup_offline(ip)

        enhanced: Dict[str, Any] = {}
        if self.ipstack_api_key and ip != LOOPBACK_IP:
            try:
                enhanced = await self.fetch_ipstack(ip)
            except ExternalServiceDegraded as e:
                logger.warning(f"Geolocation API degraded for {ip}: {e.message}")

        return merge_geolocation(enhanced, offline)

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None


def merge_geolocation(enhanced: Dict[str, Any], offline: Dict[str, Any]) -> Geolocation:
    """API values win per field; falsy values fall through to offline, then sentinels."""
    def pick(key: str, default):
        return enhanced.get(key) or offline.get(key) or default

    return Geolocation(
        country=pick("country", UNKNOWN),
        country_code=pick("country_code", UNKNOWN_COUNTRY_CODE),
        region=pick("region", UNKNOWN),
        region_code=pick("region_code", ""),
        city=pick("city", UNKNOWN),
        zip=pick("zip", ""),
        latitude=float(pick("latitude", 0.0)),
        longitude=float(pick("longitude", 0.0)),
        timezone=pick("timezone", ""),
        isp=pick("isp", ""),
        org=pick("org", ""),
    )
