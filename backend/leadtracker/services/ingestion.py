"""
Ingestion Service

Form POST → normalize → geolocate → score → persist, then a best-effort
forward of the original body to the upstream lead API.

A lead is never dropped silently: when enriched processing fails, the
directly submitted fields are saved as a minimal record instead. Only when
that save fails too does the caller see an error.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from ..config import Settings
from ..errors import PersistenceError
from .geolocation import GeoLocator
from .normalizer import (
    RequestMeta, build_minimal_record, extract_client_ip, extract_form_body,
    normalize_submission, parse_form,
)
from .submission_store import SubmissionStore

logger = logging.getLogger(__name__)

FORWARD_TIMEOUT_SECONDS = 10.0


@dataclass
class IngestionResult:
    submission_id: str
    quality_score: int
    degraded: bool = False  # True when only the minimal record was saved
    upstream: Dict[str, Any] = field(default_factory=dict)


class IngestionService:
    """Orchestrates one form submission end to end."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        locator: GeoLocator,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = SubmissionStore(db)
        self.settings = settings
        self.locator = locator
        self._http_client = http_client

    async def ingest(self, body: Any, meta: RequestMeta) -> IngestionResult:
        # Shape errors are the caller's fault and are not downgraded
        extract_form_body(body)

        try:
            submission = await self._ingest_enriched(body, meta)
            degraded = False
        except Exception:
            logger.exception("Enriched submission processing failed; saving minimal record")
            try:
                submission = self.store.insert(build_minimal_record(body, meta))
            except Exception as e:
                logger.exception("Failed to save minimal submission")
                raise PersistenceError(f"Submission could not be saved: {e}") from e
            degraded = True
            logger.info(f"Minimal submission saved despite errors: {submission.id}")

        upstream = await self.forward(body, meta)
        return IngestionResult(
            submission_id=submission.id,
            quality_score=submission.quality_score,
            degraded=degraded,
            upstream=upstream,
        )

    async def _ingest_enriched(self, body: Any, meta: RequestMeta):
        form = parse_form(body)
        ip_address = extract_client_ip(meta)
        geolocation = await self.locator.locate(ip_address)
        record = normalize_submission(
            form, meta, ip_address, geolocation,
            default_owner_id=self.settings.default_owner_id,
        )
        submission = self.store.insert(record)
        logger.info(
            f"New submission saved: id={submission.id} email={submission.email} "
            f"location={submission.geo_city}, {submission.geo_country} "
            f"quality_score={submission.quality_score}"
        )
        return submission

    async def forward(self, body: Any, meta: RequestMeta) -> Dict[str, Any]:
        """POST the original body upstream when configured. Failures are logged and ignored."""
        url = self.settings.original_api_url
        if not url:
            return {}

        headers = {"Content-Type": "application/json"}
        authorization = meta.headers.get("authorization")
        if authorization:
            headers["Authorization"] = authorization

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json=body, headers=headers, timeout=FORWARD_TIMEOUT_SECONDS)
            else:
                async with httpx.AsyncClient(timeout=FORWARD_TIMEOUT_SECONDS) as client:
                    response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Upstream forward failed: {e}")
            return {}

        return data if isinstance(data, dict) else {}
