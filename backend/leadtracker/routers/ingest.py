"""
Lead Tracker - Ingestion Router
Public form endpoint that captures, enriches and stores lead submissions.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import PersistenceError, ValidationError
from ..services.ingestion import IngestionService
from ..services.normalizer import RequestMeta

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ingestion"])


async def _read_body(request: Request):
    """JSON body, or a urlencoded/multipart form as a plain dict."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        raw = await request.body()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            raise ValidationError("Malformed JSON body")
    form = await request.form()
    return dict(form) if form else None


@router.post("/api-proxy/")
async def ingest_submission(request: Request, db: Session = Depends(get_db)):
    """
    Capture a form submission. Responds 200 whenever a record was saved,
    including the minimal-record fallback.
    """
    settings = request.app.state.settings
    meta = RequestMeta.build(request.headers, request.client.host if request.client else None)

    try:
        body = await _read_body(request)
        if body is None:
            raise ValidationError("Submission body is required")
        service = IngestionService(db, settings, request.app.state.geolocator)
        result = await service.ingest(body, meta)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"status": "ERROR", "message": e.message})
    except PersistenceError as e:
        content = {"status": "ERROR", "message": "Submission failed. Please try again."}
        if not settings.is_production:
            content["error"] = e.message
        return JSONResponse(status_code=500, content=content)

    return {
        **result.upstream,
        "status": "SUCCESS",
        "message": "Submission received successfully",
        "submissionId": result.submission_id,
    }
