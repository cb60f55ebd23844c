"""
Security Module

Handles password hashing, JWT token generation/validation.
Uses passlib with bcrypt and python-jose.

SECURITY NOTES:
- Passwords are hashed with bcrypt
- JWT tokens expire after ACCESS_TOKEN_EXPIRE_MINUTES (1 hour by default)
- Token payload includes tenant_id, checked against the resolved tenant
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from fastapi import Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from finops_api.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a password against its hash.

    Uses constant-time comparison to prevent timing attacks.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    NOTE: This is intentionally slow (100ms+).
    Don't call this in hot paths or tight loops.
    """
    return pwd_context.hash(password)


def build_token_claims(user) -> Dict[str, Any]:
    """Claims carried by every access token issued for a user."""
    role = user.role.value if hasattr(user.role, "value") else user.role
    return {
        "sub": user.id,
        "email": user.email,
        "name": user.name,
        "tenant_id": user.tenant_id,
        "role": role,
        "permissions": list(user.permissions or []),
        "is_superadmin": bool(user.is_superadmin),
    }


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Adds exp and iat to the given claims.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "exp": expire,
        "iat": datetime.utcnow()
    })

    encoded_jwt = jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )
    return encoded_jwt


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT token.

    Returns the payload if valid, None if invalid/expired.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
        return payload
    except JWTError:
        return None


def peek_token_claims(token: str) -> Optional[Dict[str, Any]]:
    """
    Read claims WITHOUT verifying signature or expiry.

    Only for routing hints (which tenant is this request for). Never use
    the result to authenticate anyone.
    """
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the auth cookie."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[len("Bearer "):].strip()
        if token:
            return token
    return request.cookies.get(settings.AUTH_COOKIE_NAME) or None
