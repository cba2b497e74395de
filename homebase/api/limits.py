"""
HOMEBASE - Rate Limiting
=========================
Shared slowapi limiter. Keyed by client IP; Redis-backed when REDIS_URL is
set, in-memory otherwise.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from homebase.services.audit import get_client_ip
from homebase.config import settings


def get_rate_limit_key(request: Request) -> str:
    """Client IP as seen through proxies, falling back to the socket peer."""
    return get_client_ip(request) or get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[settings.rate_limit_api],
    storage_uri=settings.redis_url if settings.redis_url else None,
    enabled=settings.rate_limit_enabled,
)
