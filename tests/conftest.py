"""Shared pytest fixtures for all tests."""
import os
from tests.factories.credentials import TEST_API_KEY, TEST_ENCRYPTION_KEY

# Set test configuration before importing anything from batchforge
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from batchforge.core.database import Base
from batchforge.core.security import encrypt_credential
from batchforge.services.artifact_store import FileSystemArtifactStore
from batchforge.worker.store import ExecutionStore

# Import all models to register them with Base before creating tables
from batchforge.models.execution import Execution, ItemResult  # noqa: F401


@pytest.fixture(autouse=True)
def reset_singletons():
    """
    Reset process-wide singletons before each test.

    Keeps Redis clients and rate limiter windows from leaking between tests.
    """
    from batchforge.core import redis as redis_module
    from batchforge.services import rate_limiter as rate_limiter_module

    redis_module._redis_client = None
    rate_limiter_module._rate_limiter = None

    yield

    redis_module._redis_client = None
    rate_limiter_module._rate_limiter = None


@pytest.fixture
def test_engine():
    """
    Create an in-memory SQLite engine with all tables.

    StaticPool keeps one connection so every session (including the ones
    opened from worker threads) sees the same database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory bound to the test engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db_session(session_factory):
    """Create a new database session for a test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(session_factory):
    """Execution store backed by the test database."""
    return ExecutionStore(session_factory)


@pytest.fixture
def encrypted_credential():
    """Credential blob encrypted with the test key."""
    return encrypt_credential(TEST_API_KEY, TEST_ENCRYPTION_KEY)


@pytest.fixture
def artifact_store(tmp_path):
    """Artifact store writing under a temporary directory."""
    return FileSystemArtifactStore(str(tmp_path / "artifacts"), "http://testserver/artifacts")


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of waiting."""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    """Async sleep that returns immediately and records the delay."""
    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return sleep
