"""Database engine and session factory construction."""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auditchain_api.settings import Settings, get_settings


def create_db_engine(settings: Optional[Settings] = None) -> Engine:
    """Create an engine whose store calls are bounded by the store timeout.

    On PostgreSQL the bound covers connecting, pool checkout and each
    statement, so a query blocked on a lock fails instead of hanging.
    """
    settings = settings or get_settings()
    url = settings.database_url_computed
    timeout = settings.store_timeout_seconds

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=timeout,
        connect_args={
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        },
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
