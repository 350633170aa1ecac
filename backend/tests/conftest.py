"""
Test configuration and fixtures for teamwork tracker tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for users of every role, a team, a project and tasks
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Generator, Dict

# Settings are read at import time, so they must be in place before the app is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SEED_ADMIN"] = "false"
os.environ["ENVIRONMENT"] = "test"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
from auth.permissions import Principal
from auth.security import hash_password, create_access_token

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

TEST_PASSWORD = "secret123"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def create_user(db: Session, name: str, email: str, role: models.UserRole) -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password(TEST_PASSWORD),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role.value} user with ID: {user.id}")
    return user


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    token_data = {
        "sub": str(user.id),
        "role": models.UserRole(user.role).value,
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


def auth_header(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def headers_for():
    """Build bearer headers for any user inside a test."""
    return auth_header


@pytest.fixture(scope="function")
def principal_for():
    """Build the Principal a service call would receive for a user."""
    return Principal.from_user


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    return create_user(test_db, "Admin User", "admin@test.com", models.UserRole.admin)


@pytest.fixture(scope="function")
def lead_user(test_db: Session) -> models.User:
    return create_user(test_db, "Lead User", "lead@test.com", models.UserRole.team_lead)


@pytest.fixture(scope="function")
def other_lead_user(test_db: Session) -> models.User:
    return create_user(test_db, "Other Lead", "other-lead@test.com", models.UserRole.team_lead)


@pytest.fixture(scope="function")
def member_user(test_db: Session) -> models.User:
    return create_user(test_db, "Member User", "member@test.com", models.UserRole.user)


@pytest.fixture(scope="function")
def second_member_user(test_db: Session) -> models.User:
    return create_user(test_db, "Second Member", "member2@test.com", models.UserRole.user)


@pytest.fixture(scope="function")
def outsider_user(test_db: Session) -> models.User:
    return create_user(test_db, "Outsider User", "outsider@test.com", models.UserRole.user)


@pytest.fixture(scope="function")
def team(
    test_db: Session,
    lead_user: models.User,
    member_user: models.User,
    second_member_user: models.User,
) -> models.Team:
    """
    Create a team led by lead_user with member_user and second_member_user as members.
    """
    logger.debug("Creating test team")
    team = models.Team(name="Test Team", description="A team for testing", lead_id=lead_user.id)
    test_db.add(team)
    test_db.commit()
    test_db.refresh(team)

    for user in (member_user, second_member_user):
        test_db.add(models.TeamMember(team_id=team.id, user_id=user.id))
    test_db.commit()

    logger.info(f"Created test team with ID: {team.id}")
    return team


@pytest.fixture(scope="function")
def other_team(test_db: Session, other_lead_user: models.User) -> models.Team:
    """
    Create a second team with a different lead and no members.
    """
    team = models.Team(name="Other Team", description="", lead_id=other_lead_user.id)
    test_db.add(team)
    test_db.commit()
    test_db.refresh(team)
    logger.info(f"Created other team with ID: {team.id}")
    return team


@pytest.fixture(scope="function")
def project(test_db: Session, team: models.Team) -> models.Project:
    logger.debug("Creating team project")
    project = models.Project(name="Team Project", description="A team project", team_id=team.id)
    test_db.add(project)
    test_db.commit()
    test_db.refresh(project)
    logger.info(f"Created team project with ID: {project.id}")
    return project


@pytest.fixture(scope="function")
def other_project(test_db: Session, team: models.Team) -> models.Project:
    """A second project in the same team."""
    project = models.Project(name="Second Project", description="", team_id=team.id)
    test_db.add(project)
    test_db.commit()
    test_db.refresh(project)
    return project
