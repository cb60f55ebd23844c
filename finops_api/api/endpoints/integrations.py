"""
Integration Endpoints

Superadmins connect external data sources to a tenant with OAuth.

Flow:
1. POST /admin/oauth/initiate stores integration_state:{state} and
   returns the provider's authorization URL
2. The provider redirects the browser to GET /admin/oauth/callback
   (public: the browser carries no bearer token)
3. The callback exchanges the code, upserts the Integration and redirects
   back to the admin UI
"""
from datetime import datetime
from typing import List, Optional
from urllib.parse import urlencode
import uuid

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from finops_api.api.deps import require_superadmin
from finops_api.config import get_settings
from finops_api.core.data_sources import DATA_SOURCES, get_data_source
from finops_api.core.exceptions import (
    DataSourceNotFoundError,
    IntegrationNotFoundError,
    InvalidInputError,
    TenantNotFoundError,
    UpstreamServiceError,
)
from finops_api.core.kv import KVStore, get_kv_store
from finops_api.core.oauth import OAuthClient, build_authorization_url, get_oauth_client
from finops_api.database import get_db
from finops_api.models.integration import Integration, IntegrationStatus
from finops_api.models.tenant import Tenant
from finops_api.models.user import User
from finops_api.schemas.auth import AuthUrlResponse
from finops_api.schemas.integration import DataSourceResponse, IntegrationResponse, OAuthInitiateRequest
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/admin", tags=["integrations"])


def _redirect_uri() -> str:
    return f"{settings.API_URL}/api/admin/oauth/callback"


def _client_credentials(source_id: str):
    client = settings.INTEGRATION_OAUTH_CLIENTS.get(source_id, {})
    return client.get("client_id", ""), client.get("client_secret", "")


def _admin_redirect(tenant_id: str, **params) -> RedirectResponse:
    url = f"{settings.APP_URL}/admin/tenants/{tenant_id}/data-integration?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/data-sources", response_model=List[DataSourceResponse])
async def list_data_sources(
    tenant_id: Optional[str] = Query(None),
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    """Catalog of data sources; status is "connected" for the given tenant's active integrations."""
    connected = set()
    if tenant_id:
        connected = {
            source_id for (source_id,) in db.query(Integration.source_id).filter(
                Integration.tenant_id == tenant_id,
                Integration.status == IntegrationStatus.ACTIVE
            ).all()
        }

    return [
        DataSourceResponse(
            id=source["id"],
            name=source["name"],
            description=source["description"],
            category=source["category"],
            auth_type=source["auth_type"],
            status="connected" if source["id"] in connected else "available"
        )
        for source in DATA_SOURCES
    ]


@router.get("/tenants/{tenant_id}/integrations", response_model=List[IntegrationResponse])
async def list_tenant_integrations(
    tenant_id: str,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    if not db.query(Tenant).filter(Tenant.id == tenant_id).first():
        raise TenantNotFoundError(tenant_id)

    return db.query(Integration).filter(
        Integration.tenant_id == tenant_id
    ).order_by(Integration.created_at).all()


@router.post("/oauth/initiate", response_model=AuthUrlResponse)
async def initiate_integration_oauth(
    request_data: OAuthInitiateRequest,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store)
):
    source = get_data_source(request_data.source_id)
    if not source:
        raise DataSourceNotFoundError(request_data.source_id)
    if source["auth_type"] != "oauth2":
        raise InvalidInputError(f"{source['name']} does not use OAuth")

    if not db.query(Tenant).filter(Tenant.id == request_data.tenant_id).first():
        raise TenantNotFoundError(request_data.tenant_id)

    state = str(uuid.uuid4())
    kv.put_json(
        f"integration_state:{state}",
        {
            "source_id": source["id"],
            "tenant_id": request_data.tenant_id,
            "initiated_by": current_user.id,
        },
        ttl=settings.OAUTH_STATE_TTL_SECONDS
    )

    client_id, _ = _client_credentials(source["id"])
    auth_url = build_authorization_url(
        source["authorization_url"],
        client_id,
        _redirect_uri(),
        source["scope"],
        state
    )

    logger.info(f"Integration OAuth initiated: {source['id']} for tenant {request_data.tenant_id} by {current_user.id}")

    return AuthUrlResponse(auth_url=auth_url)


@router.get("/oauth/callback")
async def integration_oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store),
    oauth: OAuthClient = Depends(get_oauth_client)
):
    """
    Provider redirect target.

    Bad or missing state is a 400; once the tenant is known, failures are
    reported to the admin UI through the redirect query string.
    """
    if not state:
        raise InvalidInputError("Missing state")

    stored = kv.get_json(f"integration_state:{state}")
    if not stored:
        raise InvalidInputError("Invalid or expired state")
    kv.delete(f"integration_state:{state}")

    tenant_id = stored["tenant_id"]
    source = get_data_source(stored["source_id"])
    if not source:
        raise DataSourceNotFoundError(stored["source_id"])
    if not db.query(Tenant).filter(Tenant.id == tenant_id).first():
        raise TenantNotFoundError(tenant_id)

    if error or not code:
        logger.warning(f"Integration OAuth denied for {source['id']}: {error or 'missing code'}")
        return _admin_redirect(tenant_id, error=error or "missing_code", source=source["id"])

    client_id, client_secret = _client_credentials(source["id"])
    try:
        tokens = await oauth.exchange_code(
            source["token_url"],
            code,
            _redirect_uri(),
            client_id,
            client_secret
        )
    except UpstreamServiceError as e:
        logger.error(f"Integration token exchange failed for {source['id']}: {e.detail}")
        return _admin_redirect(tenant_id, error="token_exchange_failed", source=source["id"])

    integration = db.query(Integration).filter(
        Integration.tenant_id == tenant_id,
        Integration.source_id == source["id"]
    ).first()
    if not integration:
        integration = Integration(
            tenant_id=tenant_id,
            source_id=source["id"],
            source_name=source["name"],
        )
        db.add(integration)

    integration.credentials = {
        **tokens,
        "obtained_at": datetime.utcnow().isoformat(),
    }
    integration.status = IntegrationStatus.ACTIVE

    db.commit()

    logger.info(f"Integration connected: {source['id']} for tenant {tenant_id}")

    return _admin_redirect(tenant_id, success="connected", source=source["id"])


@router.delete("/integrations/{integration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_integration(
    integration_id: str,
    current_user: User = Depends(require_superadmin),
    db: Session = Depends(get_db)
):
    integration = db.query(Integration).filter(Integration.id == integration_id).first()
    if not integration:
        raise IntegrationNotFoundError(integration_id)

    db.delete(integration)
    db.commit()

    logger.info(f"Integration deleted: {integration_id} by {current_user.id}")

    return None
