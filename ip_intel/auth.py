"""
Dashboard authentication with HMAC session tokens.

Security model:
- The client exchanges the shared secret once for an httpOnly cookie.
- The cookie holds HMAC-SHA256(secret, "analytics-authenticated"), never the
  secret itself, so an intercepted cookie does not reveal it.
- Programmatic clients may send "Authorization: Bearer <secret>" instead.
- All comparisons are constant-time.
"""

import hashlib
import hmac
from collections.abc import Mapping
from typing import Optional

COOKIE_NAME = "analytics_session"
COOKIE_MAX_AGE = 60 * 60 * 24 * 7  # 7 days
_TOKEN_PAYLOAD = "analytics-authenticated"


def generate_auth_token(secret: str) -> str:
    """Derive the session token stored in the cookie."""
    return hmac.new(
        secret.encode("utf-8"), _TOKEN_PAYLOAD.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def _safe_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def verify_secret(candidate: Optional[str], secret: Optional[str]) -> bool:
    if not secret or not candidate:
        return False
    return _safe_equal(candidate, secret)


def verify_auth_token(token: Optional[str], secret: Optional[str]) -> bool:
    if not secret or not token:
        return False
    return _safe_equal(token, generate_auth_token(secret))


def verify_api_auth(
    cookies: Mapping[str, str], headers: Mapping[str, str], secret: Optional[str]
) -> bool:
    """
    Check a request's cookie or Authorization header.

    Args:
        cookies: Request cookies
        headers: Request headers (case-insensitive mapping expected)
        secret: Configured dashboard secret; when unset nobody is authenticated

    Returns:
        True if either credential is valid
    """
    if not secret:
        return False

    if verify_auth_token(cookies.get(COOKIE_NAME), secret):
        return True

    auth_header = headers.get("authorization") or ""
    if auth_header.startswith("Bearer "):
        return verify_secret(auth_header[len("Bearer "):], secret)

    return False
