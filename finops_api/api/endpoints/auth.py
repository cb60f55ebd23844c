"""
Authentication Endpoints

Email/password login, Google and Microsoft OAuth login, session refresh,
logout, token verification and password reset.

Every successful login issues:
- a 1 hour JWT, returned in the body and mirrored into an HttpOnly cookie
- a session id stored in the KV store, used by /refresh to re-issue the JWT

Users are provisioned by admins. OAuth login never creates accounts.

Password reset tokens are random, single use and expire after
PASSWORD_RESET_TTL_SECONDS. Only their sha256 is stored. Requesting a new
link invalidates the previous one.
"""
from datetime import datetime, timedelta
from typing import Optional
import hashlib
import secrets
import uuid

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from finops_api.api.deps import get_current_user
from finops_api.config import get_settings
from finops_api.core.exceptions import (
    AuthenticationError,
    InvalidInputError,
    SessionNotFoundError,
)
from finops_api.core.kv import KVStore, get_kv_store
from finops_api.core.mailer import Mailer, get_mailer
from finops_api.core.oauth import (
    LOGIN_PROVIDERS,
    OAuthClient,
    build_authorization_url,
    get_login_provider,
    get_oauth_client,
)
from finops_api.core.permissions import PermissionDenied
from finops_api.core.security import build_token_claims, create_access_token, get_password_hash, verify_password
from finops_api.database import get_db
from finops_api.models.user import AuthProvider, User, UserStatus
from finops_api.schemas.auth import (
    AuthUrlResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    ResetLinkRequest,
    ResetPasswordRequest,
    VerifyResponse,
)
from finops_api.schemas.user import UserResponse
from finops_api.utils.logging import get_logger, log_security_event

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/auth", tags=["authentication"])


def _check_can_sign_in(user: User) -> None:
    """Raise AuthenticationError for suspended users or unusable tenants."""
    if user.status == UserStatus.SUSPENDED:
        log_security_event("failed_login", {"reason": "user_suspended", "user_id": user.id}, logger)
        raise AuthenticationError("User account is suspended")
    if not user.is_active:
        log_security_event("failed_login", {"reason": "user_inactive", "user_id": user.id}, logger)
        raise AuthenticationError("User account is not active")

    if user.is_superadmin and not user.tenant_id:
        return
    tenant = user.tenant
    if not tenant or not tenant.is_active:
        log_security_event(
            "failed_login",
            {"reason": "tenant_inactive", "user_id": user.id, "tenant_id": user.tenant_id},
            logger
        )
        raise AuthenticationError("Tenant account is inactive")


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.AUTH_COOKIE_SECURE,
        samesite="lax",
    )


def _write_session(kv: KVStore, session_id: str, user: User) -> None:
    kv.put_json(
        f"session:{session_id}",
        {
            "user_id": user.id,
            "tenant_id": user.tenant_id,
            "email": user.email,
            "refreshed_at": datetime.utcnow().isoformat(),
        },
        ttl=settings.SESSION_TTL_SECONDS
    )


def _issue_login(
    user: User,
    db: Session,
    kv: KVStore,
    response: Response,
    session_id: Optional[str] = None
) -> LoginResponse:
    """Issue a JWT and (re)write the session. A new session id unless one is given."""
    access_token = create_access_token(
        build_token_claims(user),
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    session_id = session_id or str(uuid.uuid4())
    _write_session(kv, session_id, user)
    _set_auth_cookie(response, access_token)

    user.last_login_at = datetime.utcnow()
    db.commit()
    db.refresh(user)

    return LoginResponse(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        session_id=session_id,
        user=UserResponse.model_validate(user)
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store)
):
    """
    Authenticate with email and password.

    SECURITY: Unknown email, wrong password and OAuth-only accounts all get
    the same "Invalid credentials" to prevent account enumeration.
    """
    email = credentials.email.lower()
    user = db.query(User).filter(User.email == email).first()

    if not user:
        log_security_event("failed_login", {"reason": "user_not_found", "email": email}, logger)
        raise AuthenticationError("Invalid credentials")

    if not user.hashed_password:
        log_security_event("failed_login", {"reason": "oauth_only_account", "user_id": user.id}, logger)
        raise AuthenticationError("Invalid credentials")

    if not verify_password(credentials.password, user.hashed_password):
        log_security_event(
            "failed_login",
            {"reason": "invalid_password", "user_id": user.id, "tenant_id": user.tenant_id},
            logger
        )
        raise AuthenticationError("Invalid credentials")

    _check_can_sign_in(user)

    result = _issue_login(user, db, kv, response)
    logger.info(f"Successful login: user={user.id}, tenant={user.tenant_id}")
    return result


@router.get("/login/{provider}", response_model=AuthUrlResponse)
async def oauth_login(
    provider: str,
    kv: KVStore = Depends(get_kv_store)
):
    """Start an OAuth login. The state is valid for OAUTH_STATE_TTL_SECONDS."""
    if provider not in LOGIN_PROVIDERS:
        raise InvalidInputError(f"Unsupported provider: {provider}")

    config = get_login_provider(provider)
    state = str(uuid.uuid4())
    kv.put_json(
        f"state:{state}",
        {"provider": provider, "created_at": datetime.utcnow().isoformat()},
        ttl=settings.OAUTH_STATE_TTL_SECONDS
    )

    extra = {"access_type": "offline", "prompt": "select_account"} if provider == "google" else {"prompt": "select_account"}
    auth_url = build_authorization_url(
        config.authorization_url,
        config.client_id,
        config.redirect_uri,
        config.scope,
        state,
        extra_params=extra
    )
    return AuthUrlResponse(auth_url=auth_url)


@router.get("/callback/{provider}", response_model=LoginResponse)
async def oauth_callback(
    provider: str,
    response: Response,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store),
    oauth: OAuthClient = Depends(get_oauth_client)
):
    """
    Complete an OAuth login.

    The state is consumed before the code exchange so it cannot be replayed.
    The account must already exist: matched by provider id, then by email.
    """
    if error:
        raise InvalidInputError(f"OAuth error: {error}")
    if not code or not state:
        raise InvalidInputError("Missing code or state")

    stored = kv.get_json(f"state:{state}")
    if not stored:
        log_security_event("failed_login", {"reason": "invalid_oauth_state", "provider": provider}, logger)
        raise InvalidInputError("Invalid or expired state")
    if stored.get("provider") != provider or provider not in LOGIN_PROVIDERS:
        raise InvalidInputError("Provider mismatch")

    kv.delete(f"state:{state}")

    config = get_login_provider(provider)
    tokens = await oauth.exchange_code(
        config.token_url,
        code,
        config.redirect_uri,
        config.client_id,
        config.client_secret
    )
    info = await oauth.fetch_user_info(config, tokens["access_token"])

    if not info.get("email") or not info.get("id"):
        raise AuthenticationError("OAuth provider returned no identity")

    auth_provider = AuthProvider(provider.upper())
    user = db.query(User).filter(
        User.provider == auth_provider,
        User.provider_id == str(info["id"])
    ).first()
    if not user:
        user = db.query(User).filter(User.email == info["email"].lower()).first()

    if not user:
        log_security_event(
            "failed_login",
            {"reason": "user_not_provisioned", "email": info["email"], "provider": provider},
            logger
        )
        raise PermissionDenied(detail="No account exists for this email. Ask your administrator for an invite.")

    # First OAuth sign-in accepts the invite
    if user.status == UserStatus.INVITED:
        user.status = UserStatus.ACTIVE

    _check_can_sign_in(user)

    user.provider = auth_provider
    user.provider_id = str(info["id"])
    user.email_verified = True
    if info.get("name") and not user.name:
        user.name = info["name"]
    if info.get("picture"):
        user.picture = info["picture"]

    result = _issue_login(user, db, kv, response)
    logger.info(f"OAuth login: user={user.id}, provider={provider}")
    return result


@router.get("/verify", response_model=VerifyResponse)
async def verify(current_user: User = Depends(get_current_user)):
    """Check the token (header or cookie) and return the user behind it."""
    return VerifyResponse(valid=True, user=UserResponse.model_validate(current_user))


@router.post("/refresh", response_model=LoginResponse)
async def refresh_token(
    payload: RefreshRequest,
    response: Response,
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store)
):
    """
    Re-issue a JWT from a session.

    Claims are rebuilt from the current user record, so role changes and
    suspensions take effect on refresh. The session TTL slides forward.
    """
    if not payload.session_id:
        raise InvalidInputError("session_id is required")

    session = kv.get_json(f"session:{payload.session_id}")
    if not session:
        raise SessionNotFoundError(payload.session_id)

    user = db.query(User).filter(User.id == session.get("user_id")).first()
    if not user:
        kv.delete(f"session:{payload.session_id}")
        raise AuthenticationError("User not found")

    _check_can_sign_in(user)

    return _issue_login(user, db, kv, response, session_id=payload.session_id)


@router.post("/logout")
async def logout(
    response: Response,
    payload: Optional[LogoutRequest] = None,
    kv: KVStore = Depends(get_kv_store)
):
    if payload and payload.session_id:
        kv.delete(f"session:{payload.session_id}")
    response.delete_cookie(settings.AUTH_COOKIE_NAME)
    return {"message": "Logged out"}


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    return current_user


RESET_LINK_SENT = "If an account with that email exists, a reset link has been sent"


def _reset_token_hash(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


@router.post("/send-reset-link", response_model=MessageResponse)
async def send_reset_link(
    payload: ResetLinkRequest,
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store),
    mailer: Mailer = Depends(get_mailer)
):
    """
    Email a password reset link.

    SECURITY: The response is the same whether or not the email exists.
    """
    email = payload.email.lower()
    user = db.query(User).filter(User.email == email).first()

    if not user or user.status == UserStatus.SUSPENDED:
        log_security_event("password_reset_no_user", {"email": email}, logger)
        return MessageResponse(message=RESET_LINK_SENT)

    previous = kv.get_json(f"password_reset_user:{user.id}")
    if previous and previous.get("hash"):
        kv.delete(f"password_reset:{previous['hash']}")

    token = secrets.token_urlsafe(32)
    token_hash = _reset_token_hash(token)
    ttl = settings.PASSWORD_RESET_TTL_SECONDS
    kv.put_json(
        f"password_reset:{token_hash}",
        {"user_id": user.id, "created_at": datetime.utcnow().isoformat()},
        ttl=ttl
    )
    kv.put_json(f"password_reset_user:{user.id}", {"hash": token_hash}, ttl=ttl)

    link = f"{settings.APP_URL}/reset-password?token={token}"
    mailer.send(
        [user.email],
        "Reset your FinOps password",
        f"Use this link to set a new password. It expires in {ttl // 60} minutes.\n\n{link}\n\n"
        "If you did not ask for a reset you can ignore this email.",
        sensitive=True
    )

    logger.info(f"Password reset requested: user={user.id}")
    return MessageResponse(message=RESET_LINK_SENT)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
    kv: KVStore = Depends(get_kv_store)
):
    """Set a new password with a reset token. The token is consumed before use."""
    token_hash = _reset_token_hash(payload.token)
    stored = kv.get_json(f"password_reset:{token_hash}")
    if not stored:
        log_security_event("password_reset_invalid_token", {}, logger)
        raise InvalidInputError("Invalid or expired reset token")

    kv.delete(f"password_reset:{token_hash}")
    kv.delete(f"password_reset_user:{stored.get('user_id')}")

    user = db.query(User).filter(User.id == stored.get("user_id")).first()
    if not user or user.status == UserStatus.SUSPENDED:
        raise InvalidInputError("Invalid or expired reset token")

    user.hashed_password = get_password_hash(payload.new_password)
    # Setting a password accepts a pending invite
    if user.status == UserStatus.INVITED:
        user.status = UserStatus.ACTIVE
    db.commit()

    log_security_event("password_reset", {"user_id": user.id, "tenant_id": user.tenant_id}, logger)
    return MessageResponse(message="Password has been reset")
