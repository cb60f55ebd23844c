"""
Tenant Middleware

Resolves the tenant a request belongs to and puts it on request.state.
This is CRITICAL for multi-tenant isolation.

Resolution order (first hit wins):
1. X-Tenant-ID header (API clients, the SPA after login)
2. Custom domain mapping in KV: costs.acme.com -> tenant id
3. Platform subdomain: acme.finops.app -> subdomain mapping in KV,
   else "acme" itself
4. tenant_id claim of the bearer token (read unverified, routing only)
5. DEFAULT_TENANT in development

The identifier is matched against tenant id, slug, then subdomain.
"""
import re
from typing import Optional

import redis
from sqlalchemy.orm import Session
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from finops_api.config import get_settings
from finops_api.core.kv import lookup_tenant_mapping
from finops_api.core.security import extract_token, peek_token_claims
from finops_api.database import SessionLocal
from finops_api.models.tenant import Tenant
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

# Never touched by tenant resolution
SKIPPED_PATHS = ["/docs", "/redoc", "/openapi.json", "/health"]

# Resolved when possible, but allowed through without a tenant
TENANT_OPTIONAL_PATHS = ["/api/auth/", "/api/admin/"]

RESERVED_SUBDOMAINS = {"www", "api"}


def _matches(path: str, prefixes) -> bool:
    return any(path == p.rstrip("/") or path.startswith(p) for p in prefixes)


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Middleware to extract and validate tenant from request.

    SECURITY: This is the first line of defense for tenant isolation.
    Route dependencies still check the user's tenant against it.
    """

    def __init__(self, app):
        super().__init__(app)
        self.subdomain_pattern = re.compile(settings.TENANT_BASE_DOMAIN_PATTERN)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path == "/" or _matches(path, SKIPPED_PATHS):
            return await call_next(request)

        tenant_optional = _matches(path, TENANT_OPTIONAL_PATHS)

        tenant_identifier = self._extract_tenant_identifier(request)

        if not tenant_identifier:
            if tenant_optional:
                return await call_next(request)
            logger.warning(f"No tenant identifier in request: {request.method} {path}")
            return JSONResponse(
                status_code=400,
                content={"detail": "Tenant context required", "type": "tenant_required"}
            )

        # The session is closed before the route runs. Routes open their own,
        # the tenant object stays readable (expire_on_commit=False).
        db = SessionLocal()
        try:
            tenant = self._load_tenant(db, tenant_identifier)
        finally:
            db.close()

        if not tenant:
            logger.warning(f"Tenant not found: {tenant_identifier}")
            if tenant_optional:
                return await call_next(request)
            return JSONResponse(
                status_code=404,
                content={"detail": f"Tenant not found: {tenant_identifier}", "type": "tenant_not_found"}
            )

        if not tenant.is_active:
            logger.warning(f"Inactive tenant attempted access: {tenant.slug} ({tenant.status.value})")
            if tenant_optional:
                return await call_next(request)
            return JSONResponse(
                status_code=403,
                content={"detail": "Tenant account is inactive", "type": "tenant_inactive"}
            )

        request.state.tenant = tenant
        request.state.tenant_id = tenant.id

        logger.debug(f"Request for tenant: {tenant.slug} ({tenant.id})")

        response = await call_next(request)
        response.headers["X-Tenant-ID"] = tenant.id
        return response

    def _extract_tenant_identifier(self, request: Request) -> Optional[str]:
        header_value = request.headers.get("X-Tenant-ID")
        if header_value:
            return header_value.strip()

        host = request.headers.get("Host", "").split(":")[0].lower()
        if host:
            tenant_id = self._mapped_tenant("domain", host)
            if tenant_id:
                return tenant_id

            match = self.subdomain_pattern.match(host)
            if match and match.group(1) not in RESERVED_SUBDOMAINS:
                subdomain = match.group(1)
                return self._mapped_tenant("subdomain", subdomain) or subdomain

        token = extract_token(request)
        if token:
            claims = peek_token_claims(token)
            if claims and claims.get("tenant_id"):
                return claims["tenant_id"]

        if settings.ENVIRONMENT == "development" and settings.DEFAULT_TENANT:
            return settings.DEFAULT_TENANT

        return None

    def _mapped_tenant(self, mapping_type: str, key: str) -> Optional[str]:
        try:
            return lookup_tenant_mapping(mapping_type, key)
        except redis.RedisError as e:
            logger.error(f"KV error during tenant mapping lookup: {e}")
            return None

    def _load_tenant(self, db: Session, identifier: str) -> Optional[Tenant]:
        """Load tenant by id, slug, then subdomain."""
        tenant = db.query(Tenant).filter(Tenant.id == identifier).first()
        if tenant:
            return tenant

        tenant = db.query(Tenant).filter(Tenant.slug == identifier).first()
        if tenant:
            return tenant

        return db.query(Tenant).filter(Tenant.subdomain == identifier).first()
