"""Fixtures for API tests."""
import pytest
from unittest.mock import Mock
from fastapi.testclient import TestClient
from redis import Redis
from batchforge.main import app
from batchforge.api.deps import get_db, get_redis_client


@pytest.fixture
def redis_client():
    """
    Stand-in Redis client answering the calls the API makes.

    Queue operations go through the real RedisQueue on top of it.
    """
    client = Mock(spec=Redis)
    client.ping.return_value = True
    client.zadd.return_value = 1
    client.zcard.return_value = 0
    return client


@pytest.fixture
def client(db_session, redis_client):
    """
    Create FastAPI test client with database and Redis overrides.

    Args:
        db_session: Test database session from root conftest
        redis_client: Mock Redis client

    Returns:
        TestClient: FastAPI test client
    """
    # Override get_db dependency
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    # Override get_redis_client dependency
    def override_get_redis_client():
        return redis_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis_client] = override_get_redis_client

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
