"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from caseflow.api import deduplication
from caseflow.config import (
    CLUSTER_SCAN_INTERVAL_SECONDS,
    CORS_ORIGINS,
    LOG_LEVEL,
    REQUEST_TIMEOUT_SECONDS,
)
from caseflow.db.session import init_db, make_engine, make_session_factory
from caseflow.dedup.service import DeduplicationService
from caseflow.dedup.settings import MatchSettings
from caseflow.errors import DeduplicationError
from caseflow.jobs import ClusterReviewJob

logger = logging.getLogger(__name__)


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"message": message, "code": code}},
    )


async def _handle_domain_error(request: Request, exc: DeduplicationError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return _error_response(exc.status_code, exc.message, exc.code)


async def _handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"Invalid request: {where} {first.get('msg', '')}".strip()
    else:
        message = "Invalid request"
    return _error_response(400, message, "INVALID_REQUEST")


def create_app(
    session_factory: sessionmaker | None = None,
    settings: MatchSettings | None = None,
    cluster_scan_interval: float = CLUSTER_SCAN_INTERVAL_SECONDS,
    request_timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> FastAPI:
    """Build the app; tests inject their own session factory and settings."""
    if session_factory is None:
        session_factory = make_session_factory(make_engine())
    service = DeduplicationService(session_factory, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: ensure the schema and run the optional cluster review."""
        init_db(session_factory.kw["bind"])
        job = None
        if cluster_scan_interval > 0:
            job = ClusterReviewJob(service, cluster_scan_interval)
            job.start()
        app.state.cluster_job = job
        yield
        if job is not None:
            await job.stop()

    app = FastAPI(
        title="CaseFlow Deduplication Service",
        description="Duplicate detection and decision audit for verification case intake",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.dedup_service = service
    app.state.request_timeout = request_timeout

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DeduplicationError, _handle_domain_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)

    app.include_router(deduplication.router, prefix="/api/cases", tags=["Deduplication"])

    @app.get("/api/health")
    async def health():
        return {"status": "operational", "service": "CaseFlow Deduplication"}

    return app


configure_logging()
app = create_app()
