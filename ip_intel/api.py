"""
IP Intel Web API
FastAPI boundary for the enrichment service and the dashboard login.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from . import __version__
from .auth import COOKIE_MAX_AGE, COOKIE_NAME, generate_auth_token, verify_api_auth, verify_secret
from .cache import EnrichmentCache, SqliteCounterStore, SqliteRecordStore
from .config import LimitConfig, Settings, load_settings
from .enrichment import Aggregator, EnrichmentService, SourceContext
from .models import ErrorKind
from .rate_limit import RateLimiter, StoreRateLimiter, create_limiter, get_client_ip

logger = logging.getLogger(__name__)

ERROR_MESSAGES = {
    ErrorKind.INVALID_FORMAT: (400, "Invalid IP address"),
    ErrorKind.PRIVATE_ADDRESS: (400, "Private IP addresses are not supported"),
    ErrorKind.STORE_FAILURE: (500, "Lookup failed"),
}


class AuthRequest(BaseModel):
    secret: str = Field(min_length=1)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, headers: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.headers = headers or {}


def _client_key(request: Request) -> str:
    peer = request.client.host if request.client else ""
    return get_client_ip(request.headers, fallback=peer)


def rate_limited(limiter: RateLimiter, message: str) -> Callable[[Request], None]:
    """Dependency that consults `limiter` before any other work happens."""

    def dependency(request: Request) -> None:
        result = limiter.check_rate_limit(_client_key(request))
        if not result.allowed:
            retry_after = result.retry_after or 1
            raise ApiError(429, message, headers={"Retry-After": str(retry_after)})

    return dependency


def build_limiter(
    limit: LimitConfig, settings: Settings, counters: Optional[SqliteCounterStore]
) -> RateLimiter:
    if settings.rate_limit_backend == "sqlite" and counters is not None:
        return StoreRateLimiter(counters, limit.window_ms, limit.max_requests)
    return create_limiter(limit.window_ms, limit.max_requests)


def build_service(settings: Settings) -> EnrichmentService:
    store = SqliteRecordStore(settings.db_path)
    cache = EnrichmentCache(store, ttl_seconds=settings.cache_ttl_seconds)
    ctx = SourceContext(timeout=settings.timeout, user_agent=settings.user_agent)
    return EnrichmentService(cache, Aggregator(ctx=ctx))


def create_app(
    settings: Optional[Settings] = None,
    *,
    service: Optional[EnrichmentService] = None,
    read_limiter: Optional[RateLimiter] = None,
    write_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    settings = settings or load_settings()
    service = service or build_service(settings)

    counters: Optional[SqliteCounterStore] = None
    if settings.rate_limit_backend == "sqlite" and (read_limiter is None or write_limiter is None):
        counters = SqliteCounterStore(settings.db_path)
    # Separate instances: a burst on one endpoint must not eat another's budget.
    read_limiter = read_limiter or build_limiter(settings.read_limit, settings, counters)
    write_limiter = write_limiter or build_limiter(settings.write_limit, settings, counters)

    app = FastAPI(
        title="IP Intel",
        description="On-demand IP intelligence for the analytics dashboard",
        version=__version__,
    )
    app.state.settings = settings
    app.state.service = service

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=exc.headers)

    def require_auth(request: Request) -> None:
        if not verify_api_auth(request.cookies, request.headers, settings.analytics_secret):
            raise ApiError(401, "Unauthorized")

    @app.get("/api/health")
    async def health():
        """Health check endpoint"""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get(
        "/api/analytics/ip-intel",
        dependencies=[
            Depends(rate_limited(read_limiter, "Too many requests. Please try again later.")),
            Depends(require_auth),
        ],
    )
    def ip_intel(ip: Optional[str] = Query(None, description="IPv4 or IPv6 address")):
        """On-demand IP intelligence lookup (cache first, then upstream sources)."""
        result = service.lookup(ip or "")
        if result.record is None:
            status, message = ERROR_MESSAGES[result.error or ErrorKind.STORE_FAILURE]
            raise ApiError(status, message)
        return JSONResponse(result.record.to_dict())

    @app.post(
        "/api/analytics/auth",
        dependencies=[
            Depends(
                rate_limited(write_limiter, "Too many login attempts. Please try again later.")
            )
        ],
    )
    async def login(request: Request):
        """Exchange the dashboard secret for an httpOnly session cookie."""
        try:
            body = await request.json()
            parsed = AuthRequest.model_validate(body)
        except (ValueError, ValidationError):
            raise ApiError(400, "Invalid input") from None

        secret = settings.analytics_secret
        if not secret or not verify_secret(parsed.secret, secret):
            logger.info("failed dashboard login from %s", _client_key(request))
            raise ApiError(401, "Unauthorized")

        response = JSONResponse({"success": True})
        response.set_cookie(
            COOKIE_NAME,
            generate_auth_token(secret),
            max_age=COOKIE_MAX_AGE,
            path="/",
            httponly=True,
            secure=settings.secure_cookies,
            samesite="strict",
        )
        return response

    return app
