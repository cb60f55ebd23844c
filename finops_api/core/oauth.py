"""
OAuth 2.0 Authorization Code Flow

Used for two things:
- user login with Google or Microsoft
- connecting a tenant's external data sources (QuickBooks, Xero, ...)

The client takes an optional httpx transport so tests can answer
provider calls with httpx.MockTransport.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from finops_api.config import get_settings
from finops_api.core.exceptions import UpstreamServiceError
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class ProviderConfig:
    name: str
    client_id: str
    client_secret: str
    authorization_url: str
    token_url: str
    userinfo_url: str
    scope: str
    redirect_uri: str


LOGIN_PROVIDERS = ("google", "microsoft")


def get_login_provider(provider: str) -> ProviderConfig:
    if provider == "google":
        return ProviderConfig(
            name="google",
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            authorization_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            userinfo_url="https://www.googleapis.com/oauth2/v2/userinfo",
            scope="openid email profile",
            redirect_uri=f"{settings.APP_URL}/auth/callback/google",
        )
    if provider == "microsoft":
        return ProviderConfig(
            name="microsoft",
            client_id=settings.MICROSOFT_CLIENT_ID,
            client_secret=settings.MICROSOFT_CLIENT_SECRET,
            authorization_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
            token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
            userinfo_url="https://graph.microsoft.com/v1.0/me",
            scope="openid email profile User.Read",
            redirect_uri=f"{settings.APP_URL}/auth/callback/microsoft",
        )
    raise ValueError(f"Unsupported provider: {provider}")


def build_authorization_url(
    authorization_url: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
    extra_params: Optional[Dict[str, str]] = None
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scope,
        "state": state,
    }
    if extra_params:
        params.update(extra_params)
    return f"{authorization_url}?{urlencode(params)}"


def normalize_user_info(provider: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Map provider-specific profile fields to id/email/name/picture."""
    if provider == "google":
        return {
            "id": data.get("id") or data.get("sub"),
            "email": data.get("email"),
            "name": data.get("name"),
            "picture": data.get("picture"),
        }
    # Microsoft Graph leaves mail empty for some accounts
    return {
        "id": data.get("id"),
        "email": data.get("mail") or data.get("userPrincipalName"),
        "name": data.get("displayName"),
        "picture": None,
    }


def _json_body(response: httpx.Response, what: str) -> Dict[str, Any]:
    """Decode a provider reply that must be a JSON object."""
    try:
        body = response.json()
    except ValueError:
        logger.error(f"OAuth {what} response is not JSON: {response.text[:200]}")
        raise UpstreamServiceError(f"Invalid {what} response from OAuth provider")
    if not isinstance(body, dict):
        raise UpstreamServiceError(f"Invalid {what} response from OAuth provider")
    return body


class OAuthClient:
    """Token exchange and profile lookup against OAuth providers."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10.0):
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    async def exchange_code(
        self,
        token_url: str,
        code: str,
        redirect_uri: str,
        client_id: str,
        client_secret: str
    ) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Raises:
            UpstreamServiceError: provider unreachable or rejected the code
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        try:
            async with self._client() as client:
                response = await client.post(
                    token_url,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"}
                )
        except httpx.HTTPError as e:
            logger.error(f"OAuth token request failed: {e}")
            raise UpstreamServiceError("Failed to reach OAuth provider")

        if response.status_code != 200:
            logger.error(f"OAuth token exchange failed: {response.status_code} {response.text}")
            raise UpstreamServiceError(f"Token exchange failed: {response.status_code}")

        tokens = _json_body(response, "token")
        if "access_token" not in tokens:
            raise UpstreamServiceError("Token response missing access_token")
        return tokens

    async def fetch_user_info(self, provider: ProviderConfig, access_token: str) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(
                    provider.userinfo_url,
                    headers={"Authorization": f"Bearer {access_token}"}
                )
        except httpx.HTTPError as e:
            logger.error(f"OAuth userinfo request failed: {e}")
            raise UpstreamServiceError("Failed to reach OAuth provider")

        if response.status_code != 200:
            logger.error(f"OAuth userinfo failed: {response.status_code}")
            raise UpstreamServiceError("Failed to fetch user info")

        return normalize_user_info(provider.name, _json_body(response, "userinfo"))


def get_oauth_client() -> OAuthClient:
    """Dependency; tests override it with a client on a mock transport."""
    return OAuthClient()
