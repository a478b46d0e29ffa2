"""
Shared test fixtures for the Geo Proximity Service test suite.
Provides a wired-up proximity core, settings and an HTTP test client.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt
import pytest
from fastapi.security import HTTPAuthorizationCredentials
from fastapi.testclient import TestClient

from geoproximity.backing_store import InMemoryBackingStore
from geoproximity.config import Settings
from geoproximity.models import Coordinate
from geoproximity.services.point_store import PointRecordStore
from geoproximity.services.proximity_query_engine import ProximityQueryEngine
from geoproximity.services.registrar import Registrar
from geoproximity.services.spatial_index_service import GridSpatialIndex


class TestSecrets:
    """Test secrets and keys for consistent testing."""
    JWT_SECRET = "test-jwt-secret-for-all-tests"
    INVALID_JWT_SECRET = "wrong-secret-for-testing"


# Reference cities used across the suite
BANGALORE = Coordinate(12.9716, 77.5946)
CHENNAI = Coordinate(13.0827, 80.2707)


@pytest.fixture
def test_secrets():
    return TestSecrets()


@pytest.fixture
def settings():
    """Real Settings with a memory backing store and auth disabled, ignoring any .env file."""
    return Settings(
        _env_file=None,
        APP_ENV="development",
        BACKING_STORE="memory",
        REQUIRE_AUTH=False,
        JWT_SECRET=None,
        CORS_ORIGINS="http://localhost:3000",
    )


@pytest.fixture
def auth_settings(settings):
    """Settings with authentication enforced."""
    return settings.model_copy(update={"REQUIRE_AUTH": True, "JWT_SECRET": TestSecrets.JWT_SECRET})


@pytest.fixture
def backing_store():
    return InMemoryBackingStore()


@pytest.fixture
def store(backing_store):
    return PointRecordStore(backing_store=backing_store)


@pytest.fixture
def index():
    return GridSpatialIndex(cell_size_m=10_000.0)


@pytest.fixture
def registrar(store, index):
    return Registrar(store, index)


@pytest.fixture
def engine(index, store):
    return ProximityQueryEngine(index, store)


@pytest.fixture
def bangalore():
    return BANGALORE


@pytest.fixture
def chennai():
    return CHENNAI


def create_jwt_token(payload: dict, secret: str = TestSecrets.JWT_SECRET, algorithm: str = "HS256") -> str:
    """Helper function to create JWT tokens for testing."""
    return jwt.encode(payload, secret, algorithm=algorithm)


@pytest.fixture
def valid_jwt_payload():
    return {
        "sub": "test-user-123",
        "email": "test@example.com",
        "role": "authenticated",
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(hours=1)
    }


@pytest.fixture
def expired_jwt_payload(valid_jwt_payload):
    return {**valid_jwt_payload, "exp": datetime.now(timezone.utc) - timedelta(hours=1)}


@pytest.fixture
def valid_jwt_token(valid_jwt_payload):
    return create_jwt_token(valid_jwt_payload)


@pytest.fixture
def auth_credentials(valid_jwt_token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=valid_jwt_token)


@pytest.fixture
def test_client(settings):
    """
    FastAPI test client running the real lifespan against ``settings``.

    Rate limit counters are reset so tests never see each other's traffic.
    """
    from geoproximity.api.v1.endpoints import limiter
    from geoproximity.main import app

    limiter.reset()
    with patch("geoproximity.main.get_settings", return_value=settings), \
            patch("geoproximity.auth.get_settings", return_value=settings):
        with TestClient(app) as client:
            yield client


@pytest.fixture
def auth_test_client(auth_settings):
    """Test client with JWT authentication enforced on mutating endpoints."""
    from geoproximity.api.v1.endpoints import limiter
    from geoproximity.main import app

    limiter.reset()
    with patch("geoproximity.main.get_settings", return_value=auth_settings), \
            patch("geoproximity.auth.get_settings", return_value=auth_settings):
        with TestClient(app) as client:
            yield client


@pytest.fixture(autouse=True)
def suppress_logging():
    """Suppress logging during tests to reduce noise."""
    import logging
    logging.disable(logging.CRITICAL)
    yield
    logging.disable(logging.NOTSET)


# Helper functions for tests
def assert_http_exception(exception, expected_status_code: int, expected_detail_substring: str = None):
    """Helper to assert HTTPException properties."""
    assert exception.status_code == expected_status_code
    if expected_detail_substring:
        assert expected_detail_substring.lower() in exception.detail.lower()
