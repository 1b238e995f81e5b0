"""Shared rate limiter for the write-heavy customer and courier endpoints."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from grocery.core.config import settings
from grocery.core.security import decode_access_token

# Per caller, see get_user_or_ip
ORDER_CREATE_RATE = "20/minute"
ORDER_CLAIM_RATE = "30/minute"


def get_user_or_ip(request: Request) -> str:
    """Rate limit by the token subject when there is one, else by client IP."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        payload = decode_access_token(auth.split(" ", 1)[1].strip())
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_user_or_ip, enabled=settings.rate_limit_enabled)
