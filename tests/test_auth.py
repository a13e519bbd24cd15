# tests/test_auth.py

from datetime import timedelta

import pytest
from jose import jwt

import config
from auth import AuthService, create_access_token, hash_password, require_roles, verify_password
from errors import ForbiddenError, UnauthorizedError
from tests.helpers import ADMIN_EMAIL, ADMIN_PASSWORD


def test_password_hashing():
    hashed = hash_password("s3cret!")
    assert hashed != "s3cret!"
    assert verify_password("s3cret!", hashed)
    assert not verify_password("wrong", hashed)


def test_token_carries_id_role_and_expiry():
    token = create_access_token({"id": "abc", "role": "admin"})
    claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    assert claims["id"] == "abc"
    assert claims["role"] == "admin"
    assert "exp" in claims


# ─────────────────────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────────────────────

def test_login_is_case_insensitive_on_email(db, admin):
    result = AuthService(db).login(ADMIN_EMAIL.upper(), ADMIN_PASSWORD)
    assert result["admin"] == {"id": admin["id"], "email": ADMIN_EMAIL, "role": "superadmin"}
    assert result["token"]


def test_bad_credentials_share_one_message(db, admin):
    service = AuthService(db)
    with pytest.raises(UnauthorizedError) as wrong_password:
        service.login(ADMIN_EMAIL, "not-the-password")
    with pytest.raises(UnauthorizedError) as unknown_email:
        service.login("nobody@arcxzone.com", ADMIN_PASSWORD)
    assert wrong_password.value.message == unknown_email.value.message == "Invalid email or password"


def test_authenticate_failures(db, admin):
    service = AuthService(db)
    with pytest.raises(UnauthorizedError, match="Authentication required"):
        service.authenticate(None)
    with pytest.raises(UnauthorizedError, match="Invalid or expired token"):
        service.authenticate("garbage")

    expired = create_access_token({"id": admin["id"], "role": "superadmin"}, expires_delta=timedelta(seconds=-5))
    with pytest.raises(UnauthorizedError, match="Invalid or expired token"):
        service.authenticate(expired)

    forged = jwt.encode({"id": admin["id"], "role": "superadmin"}, "other-secret", algorithm="HS256")
    with pytest.raises(UnauthorizedError, match="Invalid or expired token"):
        service.authenticate(forged)


def test_token_for_deleted_admin_is_rejected(db, admin):
    token = AuthService(db).login(ADMIN_EMAIL, ADMIN_PASSWORD)["token"]
    db.admin.delete_many({})
    with pytest.raises(UnauthorizedError, match="Admin not found"):
        AuthService(db).authenticate(token)


def test_ensure_admin_is_idempotent(db):
    service = AuthService(db)
    assert service.ensure_admin("Root@ArcXZone.com", "rootPassword1") is True
    assert service.ensure_admin("root@arcxzone.com", "rootPassword1") is False
    doc = db.admin.find_one({})
    assert doc["email"] == "root@arcxzone.com"
    assert doc["role"] == "superadmin"
    assert db.admin.count_documents({}) == 1


def test_require_roles_rejects_other_roles():
    check = require_roles("superadmin")
    assert check({"id": "1", "role": "superadmin"})["role"] == "superadmin"
    with pytest.raises(ForbiddenError):
        check({"id": "1", "role": "admin"})


# ─────────────────────────────────────────────────────────────
# HTTP
# ─────────────────────────────────────────────────────────────

def test_login_and_profile(client, admin):
    res = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert res.status_code == 200
    token = res.json()["token"]

    res = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    body = res.json()
    assert body["email"] == ADMIN_EMAIL
    assert "passwordHash" not in body


def test_login_failure_envelope(client, admin):
    res = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong-one"})
    assert res.status_code == 401
    assert res.json()["error"]["message"] == "Invalid email or password"
    assert res.headers["www-authenticate"] == "Bearer"


def test_profile_without_token(client):
    res = client.get("/api/auth/profile")
    assert res.status_code == 401
    assert res.json()["error"]["message"] == "Authentication required"
