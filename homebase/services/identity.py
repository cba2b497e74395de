"""
HOMEBASE - Identity Verifier
=============================
Resolves bearer tokens issued by the managed auth provider.
The backend never issues identity tokens; it only verifies them.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
import jwt
import structlog
from jwt import PyJWK

from homebase.config import Settings

logger = structlog.get_logger(__name__)

JWKS_CACHE_TTL = 3600  # 1 hour


@dataclass(frozen=True)
class Identity:
    """A verified identity. `subject` is also the member's primary key."""
    subject: UUID
    email: str
    name: str
    provider: str = "email"


class IdentityVerifier:
    """
    Verify identity-provider JWTs.

    HS256 with the shared project secret by default. When a JWKS URL is
    configured, tokens are RS256 and the key set is fetched with httpx and
    cached for an hour.
    """

    def __init__(
        self,
        secret: str,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        jwks_url: Optional[str] = None,
    ):
        self.secret = secret
        self.audience = audience or None
        self.issuer = issuer or None
        self.jwks_url = jwks_url
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "IdentityVerifier":
        return cls(
            secret=settings.auth_jwt_secret,
            audience=settings.auth_jwt_audience,
            issuer=settings.auth_jwt_issuer,
            jwks_url=settings.auth_jwks_url,
        )

    async def verify(self, token: str) -> Optional[Identity]:
        """Return the token's identity, or None if it cannot be verified."""
        try:
            payload = await self._decode(token)
        except Exception as e:
            logger.info("identity_token_rejected", error=str(e))
            return None

        try:
            subject = UUID(str(payload.get("sub", "")))
        except ValueError:
            logger.info("identity_token_bad_subject")
            return None

        metadata = payload.get("user_metadata") or {}
        email = payload.get("email") or ""
        name = metadata.get("name") or payload.get("name") or email.split("@")[0]
        provider = (payload.get("app_metadata") or {}).get("provider", "email")

        return Identity(subject=subject, email=email, name=name, provider=provider)

    async def _decode(self, token: str) -> dict:
        options = {"verify_aud": self.audience is not None, "require": ["sub", "exp"]}

        if not self.jwks_url:
            return jwt.decode(
                token,
                self.secret,
                algorithms=["HS256"],
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )

        kid = jwt.get_unverified_header(token).get("kid")
        signing_key = None
        for key_data in (await self._get_jwks()).get("keys", []):
            if key_data.get("kid") == kid:
                signing_key = PyJWK.from_dict(key_data).key
                break

        if signing_key is None:
            raise jwt.InvalidTokenError(f"Signing key not found: {kid}")

        return jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=self.audience,
            issuer=self.issuer,
            options=options,
        )

    async def _get_jwks(self) -> Dict[str, Any]:
        if self._jwks is None or time.time() - self._jwks_fetched_at > JWKS_CACHE_TTL:
            async with httpx.AsyncClient() as client:
                response = await client.get(self.jwks_url, timeout=10)
                response.raise_for_status()
                self._jwks = response.json()
                self._jwks_fetched_at = time.time()
            logger.info("jwks_refreshed", url=self.jwks_url)
        return self._jwks


_verifier: Optional[IdentityVerifier] = None


def get_identity_verifier() -> IdentityVerifier:
    """Get the global identity verifier."""
    global _verifier
    if _verifier is None:
        from homebase.config import settings
        _verifier = IdentityVerifier.from_settings(settings)
    return _verifier
