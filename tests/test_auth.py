"""
Tests for /api/auth: password login, OAuth login, sessions, tokens and password reset.
"""
import time
from datetime import timedelta

import pytest
from httpx import AsyncClient

from conftest import TEST_PASSWORD
from finops_api.core.security import build_token_claims, create_access_token, decode_access_token
from finops_api.models import User
from finops_api.models.tenant import TenantStatus
from finops_api.models.user import AuthProvider, UserRole, UserStatus


class TestLogin:
    """POST /api/auth/login"""

    @pytest.mark.asyncio
    async def test_login_success(self, client: AsyncClient, admin: User, fake_redis, db):
        response = await client.post(
            "/api/auth/login",
            json={"email": "admin@acme.com", "password": TEST_PASSWORD},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 3600
        assert data["user"]["id"] == admin.id
        assert data["user"]["role"] == "ADMIN"
        assert "hashed_password" not in data["user"]

        claims = decode_access_token(data["access_token"])
        assert claims["sub"] == admin.id
        assert claims["tenant_id"] == admin.tenant_id
        assert claims["role"] == "ADMIN"
        assert claims["is_superadmin"] is False

        assert f"session:{data['session_id']}" in fake_redis.data

        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith("token=")
        assert "HttpOnly" in set_cookie
        assert "Max-Age=3600" in set_cookie

        db.refresh(admin)
        assert admin.last_login_at is not None

    @pytest.mark.asyncio
    async def test_login_email_is_case_insensitive(self, client: AsyncClient, admin: User):
        response = await client.post(
            "/api/auth/login",
            json={"email": "Admin@ACME.com", "password": TEST_PASSWORD},
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, client: AsyncClient, admin: User):
        response = await client.post(
            "/api/auth/login",
            json={"email": "admin@acme.com", "password": "wrong-password"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid credentials"
        assert response.json()["type"] == "authentication_error"
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_login_unknown_user(self, client: AsyncClient):
        response = await client.post(
            "/api/auth/login",
            json={"email": "nobody@acme.com", "password": TEST_PASSWORD},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_login_oauth_only_account(self, client: AsyncClient, make_user, tenant):
        make_user(tenant, "oauth@acme.com", with_password=False, provider=AuthProvider.GOOGLE)

        response = await client.post(
            "/api/auth/login",
            json={"email": "oauth@acme.com", "password": TEST_PASSWORD},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_login_suspended_user(self, client: AsyncClient, make_user, tenant):
        make_user(tenant, "suspended@acme.com", status=UserStatus.SUSPENDED)

        response = await client.post(
            "/api/auth/login",
            json={"email": "suspended@acme.com", "password": TEST_PASSWORD},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "User account is suspended"

    @pytest.mark.asyncio
    async def test_login_suspended_tenant(self, client: AsyncClient, make_tenant, make_user):
        closed = make_tenant("Closed Co", "closed", status=TenantStatus.SUSPENDED)
        make_user(closed, "admin@closed.com", UserRole.ADMIN)

        response = await client.post(
            "/api/auth/login",
            json={"email": "admin@closed.com", "password": TEST_PASSWORD},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Tenant account is inactive"

    @pytest.mark.asyncio
    async def test_login_invalid_email_format(self, client: AsyncClient):
        response = await client.post(
            "/api/auth/login",
            json={"email": "not-an-email", "password": TEST_PASSWORD},
        )
        assert response.status_code == 422


class TestTokenEndpoints:

    @pytest.mark.asyncio
    async def test_verify_with_bearer(self, client: AsyncClient, viewer: User, headers_for):
        response = await client.get("/api/auth/verify", headers=headers_for(viewer))

        assert response.status_code == 200
        assert response.json()["valid"] is True
        assert response.json()["user"]["email"] == "viewer@acme.com"

    @pytest.mark.asyncio
    async def test_verify_with_cookie(self, client: AsyncClient, viewer: User, token_of):
        response = await client.get("/api/auth/verify", headers={"Cookie": f"token={token_of(viewer)}"})

        assert response.status_code == 200
        assert response.json()["user"]["id"] == viewer.id

    @pytest.mark.asyncio
    async def test_verify_without_token(self, client: AsyncClient):
        response = await client.get("/api/auth/verify")
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    @pytest.mark.asyncio
    async def test_verify_with_garbage_token(self, client: AsyncClient):
        response = await client.get("/api/auth/verify", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"

    @pytest.mark.asyncio
    async def test_verify_with_expired_token(self, client: AsyncClient, viewer: User):
        token = create_access_token(build_token_claims(viewer), expires_delta=timedelta(seconds=-5))

        response = await client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"
        assert decode_access_token(token) is None

    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, analyst: User, headers_for):
        response = await client.get("/api/auth/me", headers=headers_for(analyst))

        assert response.status_code == 200
        assert response.json()["role"] == "ANALYST"

    @pytest.mark.asyncio
    async def test_token_for_suspended_user_rejected(self, client: AsyncClient, viewer: User, headers_for, db):
        headers = headers_for(viewer)
        viewer.status = UserStatus.SUSPENDED
        db.commit()

        response = await client.get("/api/auth/me", headers=headers)
        assert response.status_code == 401
        assert response.json()["detail"] == "User account is inactive"


class TestSessions:

    async def _login(self, client: AsyncClient) -> dict:
        response = await client.post(
            "/api/auth/login",
            json={"email": "admin@acme.com", "password": TEST_PASSWORD},
        )
        assert response.status_code == 200
        return response.json()

    @pytest.mark.asyncio
    async def test_refresh_keeps_session(self, client: AsyncClient, admin: User, db):
        login = await self._login(client)

        # Role changes show up in the refreshed token
        admin.role = UserRole.OWNER
        db.commit()

        response = await client.post("/api/auth/refresh", json={"session_id": login["session_id"]})

        assert response.status_code == 200
        data = response.json()
        assert data["session_id"] == login["session_id"]
        assert decode_access_token(data["access_token"])["role"] == "OWNER"

    @pytest.mark.asyncio
    async def test_refresh_unknown_session(self, client: AsyncClient):
        response = await client.post("/api/auth/refresh", json={"session_id": "does-not-exist"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_refresh_missing_session_id(self, client: AsyncClient):
        response = await client.post("/api/auth/refresh", json={})
        assert response.status_code == 400
        assert response.json()["detail"] == "session_id is required"

    @pytest.mark.asyncio
    async def test_refresh_suspended_user(self, client: AsyncClient, admin: User, db):
        login = await self._login(client)
        admin.status = UserStatus.SUSPENDED
        db.commit()

        response = await client.post("/api/auth/refresh", json={"session_id": login["session_id"]})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_deletes_session(self, client: AsyncClient, admin: User, fake_redis):
        login = await self._login(client)

        response = await client.post("/api/auth/logout", json={"session_id": login["session_id"]})

        assert response.status_code == 200
        assert response.json() == {"message": "Logged out"}
        assert f"session:{login['session_id']}" not in fake_redis.data

        refreshed = await client.post("/api/auth/refresh", json={"session_id": login["session_id"]})
        assert refreshed.status_code == 404

    @pytest.mark.asyncio
    async def test_logout_without_body(self, client: AsyncClient):
        response = await client.post("/api/auth/logout")
        assert response.status_code == 200


class TestOAuthLogin:

    async def _start(self, client: AsyncClient, provider: str = "google") -> str:
        response = await client.get(f"/api/auth/login/{provider}")
        assert response.status_code == 200
        auth_url = response.json()["auth_url"]
        return auth_url.split("state=")[1].split("&")[0]

    @pytest.mark.asyncio
    async def test_login_url_google(self, client: AsyncClient, kv):
        response = await client.get("/api/auth/login/google")

        assert response.status_code == 200
        auth_url = response.json()["auth_url"]
        assert auth_url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        assert "response_type=code" in auth_url

        state = auth_url.split("state=")[1].split("&")[0]
        assert kv.get_json(f"state:{state}")["provider"] == "google"

    @pytest.mark.asyncio
    async def test_login_url_microsoft(self, client: AsyncClient):
        response = await client.get("/api/auth/login/microsoft")
        assert response.status_code == 200
        assert response.json()["auth_url"].startswith("https://login.microsoftonline.com/common/oauth2/v2.0/authorize?")

    @pytest.mark.asyncio
    async def test_login_url_unsupported_provider(self, client: AsyncClient):
        response = await client.get("/api/auth/login/github")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_callback_links_existing_user(self, client: AsyncClient, viewer: User, oauth_provider, db):
        oauth_provider.userinfo = {"id": "g-123", "email": "viewer@acme.com", "name": "Vee", "picture": "https://img"}
        state = await self._start(client)

        response = await client.get(f"/api/auth/callback/google?code=abc&state={state}")

        assert response.status_code == 200
        assert response.json()["user"]["id"] == viewer.id
        assert "access_token" in response.json()

        db.refresh(viewer)
        assert viewer.provider == AuthProvider.GOOGLE
        assert viewer.provider_id == "g-123"
        assert viewer.email_verified is True

        token_request = oauth_provider.requests[0]
        assert token_request.url == "https://oauth2.googleapis.com/token"
        assert b"code=abc" in token_request.content

    @pytest.mark.asyncio
    async def test_callback_activates_invited_user(self, client: AsyncClient, make_user, tenant, oauth_provider, db):
        invited = make_user(tenant, "new@acme.com", with_password=False, status=UserStatus.INVITED)
        oauth_provider.userinfo = {"id": "ms-1", "mail": "new@acme.com", "displayName": "New Person"}
        state = await self._start(client, "microsoft")

        response = await client.get(f"/api/auth/callback/microsoft?code=abc&state={state}")

        assert response.status_code == 200
        db.refresh(invited)
        assert invited.status == UserStatus.ACTIVE
        assert invited.provider == AuthProvider.MICROSOFT

    @pytest.mark.asyncio
    async def test_callback_unknown_user_forbidden(self, client: AsyncClient, oauth_provider, tenant):
        oauth_provider.userinfo = {"id": "g-999", "email": "stranger@example.com"}
        state = await self._start(client)

        response = await client.get(f"/api/auth/callback/google?code=abc&state={state}")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_callback_invalid_state(self, client: AsyncClient, oauth_provider):
        response = await client.get("/api/auth/callback/google?code=abc&state=forged")

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid or expired state"
        assert oauth_provider.requests == []

    @pytest.mark.asyncio
    async def test_callback_state_is_single_use(self, client: AsyncClient, viewer: User, oauth_provider):
        oauth_provider.userinfo = {"id": "g-123", "email": "viewer@acme.com"}
        state = await self._start(client)

        first = await client.get(f"/api/auth/callback/google?code=abc&state={state}")
        second = await client.get(f"/api/auth/callback/google?code=abc&state={state}")

        assert first.status_code == 200
        assert second.status_code == 400

    @pytest.mark.asyncio
    async def test_callback_provider_mismatch(self, client: AsyncClient, oauth_provider):
        state = await self._start(client, "google")

        response = await client.get(f"/api/auth/callback/microsoft?code=abc&state={state}")
        assert response.status_code == 400
        assert response.json()["detail"] == "Provider mismatch"

    @pytest.mark.asyncio
    async def test_callback_error_param(self, client: AsyncClient, oauth_provider):
        response = await client.get("/api/auth/callback/google?error=access_denied")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_callback_missing_code(self, client: AsyncClient, oauth_provider):
        state = await self._start(client)
        response = await client.get(f"/api/auth/callback/google?state={state}")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_callback_token_exchange_failure(self, client: AsyncClient, viewer: User, oauth_provider):
        oauth_provider.token_status = 400
        oauth_provider.token_body = {"error": "invalid_grant"}
        state = await self._start(client)

        response = await client.get(f"/api/auth/callback/google?code=bad&state={state}")

        assert response.status_code == 502
        assert response.json()["type"] == "upstream_error"

    @pytest.mark.asyncio
    async def test_callback_token_response_not_json(self, client: AsyncClient, viewer: User, oauth_provider):
        oauth_provider.token_text = "<html>Service Unavailable</html>"
        state = await self._start(client)

        response = await client.get(f"/api/auth/callback/google?code=abc&state={state}")

        assert response.status_code == 502
        assert response.json() == {"detail": "Invalid token response from OAuth provider", "type": "upstream_error"}

    @pytest.mark.asyncio
    async def test_callback_userinfo_not_json(self, client: AsyncClient, viewer: User, oauth_provider):
        oauth_provider.userinfo_text = "not json"
        state = await self._start(client)

        response = await client.get(f"/api/auth/callback/google?code=abc&state={state}")

        assert response.status_code == 502
        assert response.json()["detail"] == "Invalid userinfo response from OAuth provider"


class TestPasswordReset:
    """POST /api/auth/send-reset-link and /api/auth/reset-password"""

    @staticmethod
    def _token_from(mail: dict) -> str:
        return mail["body"].split("token=")[1].split()[0]

    async def _request_link(self, client: AsyncClient, email: str):
        return await client.post("/api/auth/send-reset-link", json={"email": email})

    @pytest.mark.asyncio
    async def test_reset_and_login_with_new_password(self, client: AsyncClient, viewer: User, mailer, kv):
        response = await self._request_link(client, "Viewer@acme.com")

        assert response.status_code == 200
        assert response.json()["message"] == "If an account with that email exists, a reset link has been sent"
        assert len(mailer.sent) == 1
        assert mailer.sent[0]["to"] == ["viewer@acme.com"]
        assert "http://localhost:5173/reset-password?token=" in mailer.sent[0]["body"]

        token = self._token_from(mailer.sent[0])
        reset = await client.post("/api/auth/reset-password", json={"token": token, "new_password": "a-new-password"})
        assert reset.status_code == 200

        old = await client.post("/api/auth/login", json={"email": "viewer@acme.com", "password": TEST_PASSWORD})
        new = await client.post("/api/auth/login", json={"email": "viewer@acme.com", "password": "a-new-password"})
        assert old.status_code == 401
        assert new.status_code == 200
        assert kv.get_json(f"password_reset_user:{viewer.id}") is None

    @pytest.mark.asyncio
    async def test_only_hash_is_stored(self, client: AsyncClient, viewer: User, mailer, fake_redis):
        await self._request_link(client, "viewer@acme.com")
        token = self._token_from(mailer.sent[0])

        reset_keys = [key for key in fake_redis.data if key.startswith("password_reset:")]
        assert len(reset_keys) == 1
        assert token not in reset_keys[0]
        assert fake_redis.expires_at[reset_keys[0]] > 0

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, client: AsyncClient, viewer: User, mailer):
        await self._request_link(client, "viewer@acme.com")
        token = self._token_from(mailer.sent[0])

        first = await client.post("/api/auth/reset-password", json={"token": token, "new_password": "first-password"})
        second = await client.post("/api/auth/reset-password", json={"token": token, "new_password": "second-password"})

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json() == {"detail": "Invalid or expired reset token", "type": "invalid_input"}

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, client: AsyncClient, viewer: User, mailer, fake_redis):
        await self._request_link(client, "viewer@acme.com")
        token = self._token_from(mailer.sent[0])
        for key in list(fake_redis.expires_at):
            if key.startswith("password_reset:"):
                fake_redis.expires_at[key] = time.time() - 1

        response = await client.post("/api/auth/reset-password", json={"token": token, "new_password": "a-new-password"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid or expired reset token"

    @pytest.mark.asyncio
    async def test_new_link_invalidates_previous(self, client: AsyncClient, viewer: User, mailer):
        await self._request_link(client, "viewer@acme.com")
        await self._request_link(client, "viewer@acme.com")
        first_token = self._token_from(mailer.sent[0])
        second_token = self._token_from(mailer.sent[1])

        stale = await client.post("/api/auth/reset-password", json={"token": first_token, "new_password": "a-new-password"})
        fresh = await client.post("/api/auth/reset-password", json={"token": second_token, "new_password": "a-new-password"})

        assert stale.status_code == 400
        assert fresh.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_email_same_response(self, client: AsyncClient, mailer, fake_redis):
        response = await self._request_link(client, "nobody@acme.com")

        assert response.status_code == 200
        assert response.json()["message"] == "If an account with that email exists, a reset link has been sent"
        assert mailer.sent == []
        assert not any(key.startswith("password_reset") for key in fake_redis.data)

    @pytest.mark.asyncio
    async def test_suspended_user_gets_no_link(self, client: AsyncClient, make_user, tenant, mailer):
        make_user(tenant, "gone@acme.com", status=UserStatus.SUSPENDED)

        response = await self._request_link(client, "gone@acme.com")

        assert response.status_code == 200
        assert mailer.sent == []

    @pytest.mark.asyncio
    async def test_reset_activates_invited_user(self, client: AsyncClient, make_user, tenant, mailer, db):
        invited = make_user(tenant, "new@acme.com", with_password=False, status=UserStatus.INVITED)
        await self._request_link(client, "new@acme.com")

        response = await client.post(
            "/api/auth/reset-password",
            json={"token": self._token_from(mailer.sent[0]), "new_password": "first-password"}
        )

        assert response.status_code == 200
        db.refresh(invited)
        assert invited.status == UserStatus.ACTIVE
        assert invited.hashed_password

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, client: AsyncClient):
        response = await client.post("/api/auth/reset-password", json={"token": "anything", "new_password": "short"})
        assert response.status_code == 422
