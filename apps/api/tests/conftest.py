"""Pytest configuration and fixtures."""

import os

# Must be set before the application module builds its default store
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from auditchain_api.db.base import Base  # noqa: E402
from auditchain_api.ledger.store import InMemoryAuditStore, SQLAlchemyAuditStore  # noqa: E402
from auditchain_api.main import create_app  # noqa: E402
from auditchain_api.models import AuditLogEntry  # noqa: E402, F401
from auditchain_api.settings import Settings  # noqa: E402

# Use test database URL from environment or default to SQLite in-memory
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")


@pytest.fixture(scope="function")
def session_factory():
    """
    Create a session factory over a fresh schema.

    Point TEST_DATABASE_URL at a real PostgreSQL instance to run the
    store tests against it.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def sql_store(session_factory) -> SQLAlchemyAuditStore:
    """Audit store backed by the test database."""
    return SQLAlchemyAuditStore(session_factory)


@pytest.fixture
def memory_store() -> InMemoryAuditStore:
    """Empty in-memory audit store."""
    return InMemoryAuditStore()


@pytest.fixture
def settings() -> Settings:
    """Test settings with no ledger delegate."""
    return Settings(database_url="sqlite://", environment="test", ledger_delegate_url=None)


@pytest.fixture
def app(settings, memory_store):
    """Application wired to the in-memory store."""
    return create_app(settings=settings, store=memory_store)


@pytest.fixture
def client(app):
    """Test client running the application lifespan."""
    with TestClient(app) as test_client:
        yield test_client
