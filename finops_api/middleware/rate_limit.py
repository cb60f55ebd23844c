"""
Rate Limiting Middleware

Fixed-window rate limiting with counters in the KV store.

Requests are counted per user when they carry a valid token, otherwise
per client IP. The limit depends on the caller's role; a tenant's
rate_limit_per_minute overrides the role default when set.

The counter is read, incremented and written back without a transaction.
Concurrent requests can undercount slightly. Accepted.

KV errors fail open: the request is allowed and the error logged.
"""
import time
from typing import Dict, Optional, Tuple

import redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from finops_api.config import get_settings
from finops_api.core.kv import get_kv_store
from finops_api.core.security import decode_access_token, extract_token
from finops_api.database import SessionLocal
from finops_api.models.tenant import Tenant
from finops_api.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)
settings = get_settings()


def client_ip(request: Request) -> str:
    ip = request.headers.get("CF-Connecting-IP")
    if ip:
        return ip
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window limiter keyed by user or IP.

    Adds X-RateLimit-Limit/Remaining/Reset to every counted response.
    """

    def __init__(self, app):
        super().__init__(app)

        self.excluded_paths = [
            "/docs",
            "/redoc",
            "/openapi.json",
            "/health",
        ]
        # tenant id -> (override or None, expires_at)
        self._tenant_overrides: Dict[str, Tuple[Optional[int], float]] = {}

    async def dispatch(self, request: Request, call_next):
        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        identifier, limit = self._identify(request)
        key = f"ratelimit:{identifier}"

        try:
            allowed, remaining, reset_at = self._check_rate_limit(key, limit)
        except redis.RedisError as e:
            logger.error(f"KV error in rate limiting, allowing request: {e}")
            return await call_next(request)

        if not allowed:
            retry_after = max(reset_at - int(time.time()), 1)
            log_security_event(
                "rate_limit_exceeded",
                {"rate_limit_key": identifier, "path": request.url.path, "limit": limit},
                logger
            )
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded. Please try again later.",
                    "type": "rate_limit_exceeded",
                    "retry_after": retry_after
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_at),
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_at)
        return response

    def _identify(self, request: Request) -> Tuple[str, int]:
        """Return (counter identifier, limit) for the caller."""
        token = extract_token(request)
        payload = decode_access_token(token) if token else None
        if payload and payload.get("sub"):
            role = payload.get("role") or "VIEWER"
            limit = settings.RATE_LIMITS.get(role, settings.RATE_LIMITS["VIEWER"])
            tenant_id = payload.get("tenant_id")
            if tenant_id:
                override = self._tenant_override(tenant_id)
                if override:
                    limit = override
            return f"user:{payload['sub']}", limit
        return f"ip:{client_ip(request)}", settings.RATE_LIMITS["anonymous"]

    def _tenant_override(self, tenant_id: str) -> Optional[int]:
        now = time.time()
        cached = self._tenant_overrides.get(tenant_id)
        if cached and cached[1] > now:
            return cached[0]

        db = SessionLocal()
        try:
            tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
            override = tenant.rate_limit_per_minute if tenant else None
        finally:
            db.close()

        self._tenant_overrides[tenant_id] = (override, now + settings.TENANT_CACHE_TTL_SECONDS)
        return override

    def _check_rate_limit(self, key: str, limit: int) -> Tuple[bool, int, int]:
        """
        Count one request against the window.

        Returns: (allowed, remaining, reset_at epoch seconds)
        """
        kv = get_kv_store()
        now = int(time.time())
        window = settings.RATE_LIMIT_WINDOW_SECONDS

        entry = kv.get_json(key)
        if not entry or entry.get("reset_at", 0) <= now:
            entry = {"count": 0, "reset_at": now + window}

        reset_at = int(entry["reset_at"])
        if entry["count"] >= limit:
            return False, 0, reset_at

        entry["count"] += 1
        kv.put_json(key, entry, ttl=max(reset_at - now, 1))
        return True, max(limit - entry["count"], 0), reset_at
