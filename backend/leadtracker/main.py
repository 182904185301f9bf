"""
Lead Tracker - FastAPI Application

Main entry point for the Lead Tracker backend.

Pipeline:
- Form POST → Normalizer → GeoLocator → Quality Scorer → SubmissionStore
- Dashboard reads → AnalyticsAggregator / SubmissionStore, gated by role permissions
"""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import Settings
from .database import create_db_engine, create_session_factory, init_db
from .errors import LeadTrackerError
from .routers import auth_router, submissions_router, analytics_router, ingest_router
from .services.geolocation import GeoLocator

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, geolocator: Optional[GeoLocator] = None) -> FastAPI:
    """Build the application with its own engine, session factory and geolocator."""
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = create_db_engine(settings.database_url)
    geolocator = geolocator or GeoLocator(
        geoip_db_path=settings.geoip_db_path,
        ipstack_api_key=settings.ipstack_api_key,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize database on startup, release resources on shutdown."""
        init_db(engine)
        yield
        geolocator.close()
        engine.dispose()

    app = FastAPI(
        lifespan=lifespan,
        title="Lead Tracker",
        description="""
        Lead Tracker - Lead Capture and Analytics API

        Captures lead form submissions, enriches them with device and
        geolocation data, scores their quality and serves a role-gated
        dashboard API.

        ## Roles
        - **admin**: everything, including user management and deletes
        - **manager**: submissions, analytics and exports
        - **analyst**: submissions and analytics
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.geolocator = geolocator

    _install_error_handlers(app, settings)

    # Include routers
    app.include_router(ingest_router)
    app.include_router(auth_router)
    app.include_router(submissions_router)
    app.include_router(analytics_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    return app


def _install_error_handlers(app: FastAPI, settings: Settings) -> None:
    """Every error response is JSON {"message": ...}."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if exc.status_code != 404 or exc.detail != "Not Found" else "Route not found"
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": message},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "error": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"message": "Invalid request", "errors": errors})

    @app.exception_handler(LeadTrackerError)
    async def service_exception_handler(request: Request, exc: LeadTrackerError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Server error on {request.method} {request.url.path}")
        content = {"message": "Internal server error"}
        if not settings.is_production:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)


# For running with: uvicorn leadtracker.main:app
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=5000)
