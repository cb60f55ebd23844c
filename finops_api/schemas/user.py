"""
User Schemas

Request/response models for user operations.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from finops_api.models.user import UserRole, UserStatus, AuthProvider


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: Optional[str] = Field(None, max_length=255)


class UserCreate(UserBase):
    """
    Schema for creating (inviting) a user.

    Without a password the user is created INVITED and signs in with OAuth.
    """
    password: Optional[str] = Field(None, min_length=8, max_length=100)
    role: UserRole = UserRole.VIEWER
    permissions: List[str] = []


class AdminUserCreate(UserCreate):
    """Superadmin variant: any tenant, optionally another superadmin."""
    tenant_id: Optional[str] = None
    is_superadmin: bool = False


class UserUpdate(BaseModel):
    """Schema for updating a user. All fields optional."""
    name: Optional[str] = Field(None, max_length=255)
    picture: Optional[str] = Field(None, max_length=512)
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    permissions: Optional[List[str]] = None
    preferences: Optional[Dict[str, Any]] = None


class AdminUserUpdate(UserUpdate):
    email: Optional[EmailStr] = None
    tenant_id: Optional[str] = None
    is_superadmin: Optional[bool] = None
    password: Optional[str] = Field(None, min_length=8, max_length=100)


class UserResponse(UserBase):
    """User response schema (excludes sensitive data)."""
    id: str
    tenant_id: Optional[str]
    picture: Optional[str] = None
    role: UserRole
    is_superadmin: bool
    status: UserStatus
    provider: AuthProvider
    email_verified: bool
    permissions: List[str] = []
    preferences: Dict[str, Any] = {}
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    """Paginated list of users."""
    users: list[UserResponse]
    total: int
    page: int
    page_size: int
