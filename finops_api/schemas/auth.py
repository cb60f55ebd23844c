"""
Authentication Schemas

Request/response models for authentication endpoints.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from finops_api.schemas.user import UserResponse


class LoginRequest(BaseModel):
    """Login request body. Email is unique across tenants."""
    email: EmailStr
    password: str = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "admin@demo.finops.app",
                "password": "securepassword123"
            }
        }


class LoginResponse(BaseModel):
    """JWT plus the session used to refresh it."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    session_id: str
    user: UserResponse


class AuthUrlResponse(BaseModel):
    auth_url: str


class RefreshRequest(BaseModel):
    """session_id is checked by the route so a missing one is a 400."""
    session_id: Optional[str] = None


class LogoutRequest(BaseModel):
    session_id: Optional[str] = None


class VerifyResponse(BaseModel):
    valid: bool
    user: UserResponse


class ResetLinkRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=100)


class MessageResponse(BaseModel):
    message: str
