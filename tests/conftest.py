# tests/conftest.py
"""
Global test bootstrap
- Rate limiting off unless a test opts in with ``ratelimit_on``
- Each test gets a fresh in-memory MongoDB (mongomock) with the real indexes
- ``client`` is a TestClient whose ``get_db`` dependency points at that database
"""

import os

# Set BEFORE importing the app so config picks them up.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_TO_FILE", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from auth import AuthService
from limiter import limiter
from main import app
from tests.helpers import ADMIN_EMAIL, ADMIN_PASSWORD


@pytest.fixture()
def db():
    test_db = mongomock.MongoClient(tz_aware=True)["arcxzone_test"]
    database.ensure_indexes(test_db)
    return test_db


@pytest.fixture()
def client(db):
    app.dependency_overrides[database.get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def admin(db):
    return AuthService(db).create_admin(ADMIN_EMAIL, ADMIN_PASSWORD, role="superadmin")


@pytest.fixture()
def auth_headers(client, admin):
    res = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['token']}"}


@pytest.fixture()
def ratelimit_on():
    """Enforce rate limits for one test, with fresh counters."""
    limiter.reset()
    limiter.enabled = True
    yield
    limiter.enabled = False
    limiter.reset()
