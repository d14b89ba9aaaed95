"""Audit chain API - Main FastAPI application."""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from redis.exceptions import RedisError

from auditchain_api import __version__
from auditchain_api.db.session import create_db_engine, create_session_factory
from auditchain_api.ledger.delegate import LedgerDelegate, build_ledger_delegate
from auditchain_api.ledger.locks import RedisSessionLocks, SessionLocks, build_session_locks
from auditchain_api.ledger.service import IngestionService
from auditchain_api.ledger.store import AuditStore, SQLAlchemyAuditStore
from auditchain_api.middleware.correlation import CorrelationIdFilter, CorrelationIDMiddleware
from auditchain_api.routes import audit
from auditchain_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)

LOG_FORMATS = {
    "json": (
        '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", '
        '"module": "%(name)s", "correlation_id": "%(correlation_id)s"}'
    ),
    "text": "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s",
}


def configure_logging(settings: Settings) -> None:
    """Configure root logging once per process."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    logging.basicConfig(
        level=settings.log_level,
        format=LOG_FORMATS.get(settings.log_format, LOG_FORMATS["json"]),
        handlers=[handler],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting audit chain API...")
    try:
        app.state.settings.validate_production_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise
    yield
    logger.info("Shutting down audit chain API...")
    if app.state.ledger_delegate is not None:
        app.state.ledger_delegate.close()


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[AuditStore] = None,
    delegate: Optional[LedgerDelegate] = None,
    locks: Optional[SessionLocks] = None,
) -> FastAPI:
    """Create the application with its store handle and collaborators.

    Collaborators not passed in are built from settings here, once.
    """
    settings = settings or get_settings()
    if store is None:
        store = SQLAlchemyAuditStore(create_session_factory(create_db_engine(settings)))
    if delegate is None:
        delegate = build_ledger_delegate(settings)
    if locks is None:
        locks = build_session_locks(settings)

    app = FastAPI(
        title="Audit Chain API",
        description="Tamper-evident session audit log",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.audit_store = store
    app.state.ledger_delegate = delegate
    app.state.session_locks = locks
    app.state.ingestion_service = IngestionService(
        store,
        delegate=delegate,
        locks=locks,
        conflict_retries=settings.chain_conflict_retries,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(CorrelationIDMiddleware)

    app.mount("/metrics", make_asgi_app())
    app.include_router(audit.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint (basic liveness)."""
        return {
            "status": "healthy",
            "service": "auditchain-api",
            "version": __version__,
        }

    @app.get("/ready")
    async def readiness_check():
        """Readiness check endpoint (verifies dependencies)."""
        checks = {
            "database": app.state.audit_store.ping(),
            "redis": None,  # None if not required
        }

        session_locks = app.state.session_locks
        if isinstance(session_locks, RedisSessionLocks):
            try:
                session_locks.client.ping()
                checks["redis"] = True
            except RedisError as e:
                logger.error(f"Redis check failed: {e}")
                checks["redis"] = False

        all_ready = all(value for value in checks.values() if value is not None)
        return JSONResponse(
            content={
                "status": "ready" if all_ready else "not_ready",
                "checks": checks,
            },
            status_code=200 if all_ready else 503,
        )

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Audit Chain API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app


configure_logging(get_settings())
app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
