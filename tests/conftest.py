"""
HOMEBASE - Test Configuration
==============================
Pytest fixtures and configuration for all test types.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from uuid import uuid4

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

TEST_JWT_SECRET = "test_identity_secret_for_homebase"

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUTH_JWT_SECRET"] = TEST_JWT_SECRET
os.environ["AUTH_JWKS_URL"] = ""
os.environ["CORS_ORIGINS"] = "http://localhost:3000"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""  # In-memory rate limit storage
os.environ["ALERT_WEBHOOK_URL"] = ""
os.environ["SENTRY_DSN"] = ""

from homebase.db.database import Base
from homebase.db.models import Member
from homebase.db.seed import seed_roles_and_permissions
from homebase.logging_config import configure_logging
from homebase.services.identity import Identity, IdentityVerifier
from homebase.services.members import MemberService
from homebase.services.permissions import PermissionService
from homebase.services.sessions import SessionService

configure_logging(stream=sys.stderr)

TEST_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"


# ===========================================
# Database Fixtures
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Database session with the role and permission catalogue seeded."""
    async_session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_factory() as session:
        await seed_roles_and_permissions(session)
        yield session
        await session.rollback()


# ===========================================
# Identity Fixtures
# ===========================================

@pytest.fixture
def verifier() -> IdentityVerifier:
    return IdentityVerifier(secret=TEST_JWT_SECRET, audience="authenticated")


@pytest.fixture
def make_token():
    """Factory for identity provider tokens signed with the test secret."""

    def _make(
        subject=None,
        email=None,
        name="Test Member",
        expires_in=timedelta(hours=1),
        audience="authenticated",
        secret=TEST_JWT_SECRET,
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(subject or uuid4()),
            "email": email or make_email(),
            "aud": audience,
            "iat": now,
            "exp": now + expires_in,
            "jti": uuid4().hex,
            "user_metadata": {"name": name},
        }
        return jwt.encode(payload, secret, algorithm="HS256")

    return _make


# ===========================================
# Member Fixtures
# ===========================================

@pytest_asyncio.fixture
async def member(db_session: AsyncSession) -> Member:
    """A registered member with a personal household."""
    member, _ = await MemberService(db_session).get_or_create_from_identity(
        Identity(subject=uuid4(), email=make_email(), name="Test Member")
    )
    return member


@pytest_asyncio.fixture
async def household_id(db_session: AsyncSession, member: Member):
    """The member's personal household."""
    memberships = await PermissionService(db_session).get_memberships(member.id)
    return memberships[0].group_id


@pytest_asyncio.fixture
async def member_session(db_session: AsyncSession, member: Member, make_token):
    """An active session for `member`: (session, token)."""
    token = make_token(subject=member.id, email=member.email)
    session, _ = await SessionService(db_session).create_session(
        member.id, token, ip_address="10.0.0.1", user_agent=TEST_USER_AGENT
    )
    return session, token


# ===========================================
# HTTP Client Fixtures
# ===========================================

@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    from homebase.api.server import app
    from homebase.db.database import get_db

    # Override database dependency
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def login(client: AsyncClient, make_token):
    """
    Open a session through the API.

    Returns (token, response body).
    """

    async def _login(subject=None, email=None, name="Test Member", device=None):
        token = make_token(subject=subject, email=email, name=name)
        response = await client.post(
            "/api/v1/auth/sessions",
            json=device or {},
            headers=bearer(token),
        )
        assert response.status_code == 201, response.text
        return token, response.json()

    return _login


# ===========================================
# Utility Functions
# ===========================================

@pytest.fixture
def auth_headers():
    """Build request headers for a bearer token and optional group."""
    return bearer


def bearer(token: str, group_id=None) -> dict:
    headers = {"Authorization": f"Bearer {token}"}
    if group_id:
        headers["X-Group-ID"] = str(group_id)
    return headers


def make_email():
    """Generate a unique test email."""
    return f"member_{uuid4().hex[:8]}@example.com"
