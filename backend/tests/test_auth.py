"""
Tests for authentication endpoints and user listing.

Tests cover:
- Registration (roles, validation, duplicate email)
- Login and bearer token use
- Token rejection (missing, malformed, expired)
- Admin-only user listing
"""

import asyncio
import logging
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

import database
import main
import models
from tests.conftest import TEST_PASSWORD, create_auth_token

logger = logging.getLogger(__name__)


# ============== Registration ==============

def test_register_defaults_to_user_role(client: TestClient):
    response = client.post(
        "/api/auth/register",
        json={"name": "Alice", "email": "alice@test.com", "password": "password1"},
    )

    assert response.status_code == 201, response.json()
    data = response.json()
    assert data["role"] == "user"
    assert data["email"] == "alice@test.com"
    assert "password_hash" not in data
    logger.info("✓ Registration defaults to user role")


def test_register_with_team_lead_role(client: TestClient):
    response = client.post(
        "/api/auth/register",
        json={"name": "Bob", "email": "bob@test.com", "password": "password1", "role": "team_lead"},
    )

    assert response.status_code == 201
    assert response.json()["role"] == "team_lead"
    logger.info("✓ Registration accepts team_lead role")


def test_register_rejects_unknown_role(client: TestClient):
    response = client.post(
        "/api/auth/register",
        json={"name": "Eve", "email": "eve@test.com", "password": "password1", "role": "superuser"},
    )

    assert response.status_code == 400
    assert "role" in response.json()["detail"]
    logger.info("✓ Unknown role rejected")


def test_register_rejects_short_password(client: TestClient):
    response = client.post(
        "/api/auth/register",
        json={"name": "Carl", "email": "carl@test.com", "password": "123"},
    )

    assert response.status_code == 400
    assert "password" in response.json()["detail"]
    logger.info("✓ Short password rejected")


def test_register_duplicate_email(client: TestClient, member_user: models.User):
    response = client.post(
        "/api/auth/register",
        json={"name": "Again", "email": member_user.email, "password": "password1"},
    )

    assert response.status_code == 400
    assert "already exists" in response.json()["detail"]
    logger.info("✓ Duplicate email rejected")


# ============== Login ==============

def test_login_returns_usable_token(client: TestClient, lead_user: models.User):
    response = client.post("/api/auth/login", json={"email": lead_user.email, "password": TEST_PASSWORD})

    assert response.status_code == 200, response.json()
    token = response.json()["access_token"]
    assert response.json()["token_type"] == "bearer"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == lead_user.id
    assert me.json()["role"] == "team_lead"
    logger.info("✓ Login token authenticates the user")


def test_login_with_wrong_password(client: TestClient, lead_user: models.User):
    response = client.post("/api/auth/login", json={"email": lead_user.email, "password": "wrong-password"})

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid email or password"}
    assert response.headers["WWW-Authenticate"] == "Bearer"
    logger.info("✓ Wrong password rejected")


def test_login_with_unknown_email(client: TestClient):
    response = client.post("/api/auth/login", json={"email": "nobody@test.com", "password": "password1"})

    assert response.status_code == 401
    logger.info("✓ Unknown email rejected")


# ============== Token Handling ==============

def test_protected_route_without_token(client: TestClient):
    response = client.get("/api/teams")

    assert response.status_code == 401
    assert response.json()["detail"] == "Not authenticated"
    assert response.headers["WWW-Authenticate"] == "Bearer"
    logger.info("✓ Missing token rejected")


def test_protected_route_with_garbage_token(client: TestClient):
    response = client.get("/api/teams", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    logger.info("✓ Malformed token rejected")


def test_expired_token_rejected(client: TestClient, member_user: models.User):
    token = create_auth_token(member_user, expires_delta=timedelta(minutes=-5))

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    logger.info("✓ Expired token rejected")


def test_token_for_deleted_user_rejected(client: TestClient, test_db: Session, member_user: models.User):
    token = create_auth_token(member_user)
    test_db.delete(member_user)
    test_db.commit()

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    logger.info("✓ Token of a removed user rejected")


# ============== Users ==============

def test_admin_lists_users(client: TestClient, admin_user, member_user, headers_for):
    response = client.get("/api/users", headers=headers_for(admin_user))

    assert response.status_code == 200
    emails = [u["email"] for u in response.json()]
    assert emails == [admin_user.email, member_user.email]
    logger.info("✓ Admin can list users")


def test_non_admin_cannot_list_users(client: TestClient, lead_user, headers_for):
    response = client.get("/api/users", headers=headers_for(lead_user))

    assert response.status_code == 403
    logger.info("✓ User listing is admin only")


def test_health(client: TestClient):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


# ============== Admin Seeding ==============

def test_startup_seeds_admin_once(test_db: Session, monkeypatch):
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=test_db.get_bind())
    monkeypatch.setattr(database, "SessionLocal", session_factory)
    monkeypatch.setenv("SEED_ADMIN", "true")
    monkeypatch.setenv("ADMIN_EMAIL", "root@test.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "a-strong-password")

    asyncio.run(main.ensure_admin_user())
    asyncio.run(main.ensure_admin_user())

    admins = test_db.query(models.User).filter(models.User.email == "root@test.com").all()
    assert len(admins) == 1
    assert admins[0].role == models.UserRole.admin
    logger.info("✓ Admin seeded exactly once")
