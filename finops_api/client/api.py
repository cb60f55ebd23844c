"""
REST Client

Async httpx client for the FinOps API, used by scripts and the chat
session. Sends the bearer token and X-Tenant-ID on every call and
refreshes the token once through the login session on a 401.
"""
from typing import Any, Dict, Optional

import httpx

from finops_api.utils.logging import get_logger

logger = get_logger(__name__)


class ApiError(Exception):
    """Non-2xx response from the API."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _error_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return body["detail"]
    return body


class ApiClient:
    """
    Usage:
        async with ApiClient("https://api.finops.app") as api:
            await api.login("admin@acme.com", "secret")
            budgets = await api.get("/api/budgets")
    """

    def __init__(
        self,
        base_url: str,
        access_token: Optional[str] = None,
        session_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0
    ):
        self.access_token = access_token
        self.session_id = session_id
        self.tenant_id = tenant_id
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        if self.tenant_id:
            headers["X-Tenant-ID"] = self.tenant_id
        return headers

    def _remember_login(self, data: Dict[str, Any]) -> None:
        self.access_token = data["access_token"]
        self.session_id = data.get("session_id", self.session_id)
        user = data.get("user") or {}
        if user.get("tenant_id"):
            self.tenant_id = user["tenant_id"]

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        data = await self.request("POST", "/api/auth/login", json={"email": email, "password": password})
        self._remember_login(data)
        return data

    async def refresh(self) -> bool:
        """Re-issue the access token from the session. False if that is not possible."""
        if not self.session_id:
            return False
        response = await self._client.post("/api/auth/refresh", json={"session_id": self.session_id})
        if response.status_code != 200:
            logger.warning(f"Token refresh failed: {response.status_code}")
            return False
        self._remember_login(response.json())
        return True

    async def request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send a request and return the decoded JSON body (None when empty).

        Raises:
            ApiError: the API answered with a non-2xx status
            httpx.TransportError: the API could not be reached
        """
        response = await self._client.request(method, path, headers=self._headers(), **kwargs)

        if response.status_code == 401 and await self.refresh():
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)

        if response.status_code >= 400:
            raise ApiError(response.status_code, _error_detail(response))

        if not response.content:
            return None
        return response.json()

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs) -> Any:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)
