"""
HOMEBASE - Identity Verifier Unit Tests
========================================
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import jwt
import pytest

from homebase.security.gate import user_agent_similarity

SECRET = "test_identity_secret_for_homebase"


class TestIdentityVerifier:
    """HS256 provider tokens."""

    @pytest.mark.asyncio
    async def test_valid_token(self, verifier, make_token):
        subject = uuid4()
        identity = await verifier.verify(make_token(subject=subject, email="ana@example.com", name="Ana"))
        assert identity is not None
        assert identity.subject == subject
        assert identity.email == "ana@example.com"
        assert identity.name == "Ana"
        assert identity.provider == "email"

    @pytest.mark.asyncio
    async def test_wrong_secret(self, verifier, make_token):
        token = make_token(secret="another_secret_entirely_1234")
        assert await verifier.verify(token) is None

    @pytest.mark.asyncio
    async def test_expired(self, verifier, make_token):
        token = make_token(expires_in=timedelta(minutes=-5))
        assert await verifier.verify(token) is None

    @pytest.mark.asyncio
    async def test_wrong_audience(self, verifier, make_token):
        assert await verifier.verify(make_token(audience="someone-else")) is None

    @pytest.mark.asyncio
    async def test_garbage(self, verifier):
        assert await verifier.verify("not-a-jwt") is None

    @pytest.mark.asyncio
    async def test_subject_must_be_uuid(self, verifier):
        token = jwt.encode(
            {
                "sub": "user_123",
                "email": "a@example.com",
                "aud": "authenticated",
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
            },
            SECRET,
            algorithm="HS256",
        )
        assert await verifier.verify(token) is None

    @pytest.mark.asyncio
    async def test_name_falls_back_to_email(self, verifier):
        token = jwt.encode(
            {
                "sub": str(uuid4()),
                "email": "sam@example.com",
                "aud": "authenticated",
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
                "app_metadata": {"provider": "google"},
            },
            SECRET,
            algorithm="HS256",
        )
        identity = await verifier.verify(token)
        assert identity.name == "sam"
        assert identity.provider == "google"


class TestUserAgentSimilarity:
    def test_identical(self):
        ua = "Mozilla/5.0 (Macintosh) Safari/605.1"
        assert user_agent_similarity(ua, ua) == 1.0

    def test_disjoint(self):
        assert user_agent_similarity("curl/8.0", "Mozilla Firefox") == 0.0

    def test_minor_version_bump_is_similar(self):
        a = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
        b = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/121.0 Safari/537.36"
        assert user_agent_similarity(a, b) >= 0.8

    def test_empty(self):
        assert user_agent_similarity("", "") == 1.0
