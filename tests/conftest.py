"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app import so that the
settings, the engine and the upload directory all point at a throwaway
location.
"""

import os
import shutil
import tempfile

import pytest

_TEST_DIR = tempfile.mkdtemp(prefix="chat_api_test_")

os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("JWT_SECRET", "test-secret-0123456789abcdef0123456789")
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TEST_DIR, "uploads"))

# Clear settings cache before any app imports to ensure test env vars are used
from chat_api.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from chat_api.main import app  # noqa: E402
from chat_api.storage import Base, engine  # noqa: E402


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database and upload dir for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    # Cleanup - drop all tables and stored files after test
    Base.metadata.drop_all(bind=engine)
    shutil.rmtree(get_settings().UPLOAD_DIR, ignore_errors=True)


@pytest.fixture
def auth_headers(client):
    """Bearer header for a freshly registered user 'alice'."""
    response = client.post(
        "/register",
        json={"username": "alice", "email": "a@x.com", "password": "secret1"},
    )
    assert response.status_code == 201

    response = client.post("/login", json={"username": "alice", "password": "secret1"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    shutil.rmtree(_TEST_DIR, ignore_errors=True)
