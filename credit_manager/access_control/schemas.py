# Pydantic schemas for actors and authentication
from datetime import datetime
from typing import List, Optional
import enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import RoleEnum


class RoleSchema(str, enum.Enum):
    ADMIN = "admin"
    UNDERWRITER = "underwriter"
    ANALYST = "analyst"
    VIEWER = "viewer"


class PermissionGrant(BaseModel):
    resource: str
    actions: List[str] = []


class RequestContext(BaseModel):
    """Where a request came from; stored alongside audit entries."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    path: Optional[str] = None


# --- User Schemas ---
class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)
    role: RoleSchema = RoleSchema.VIEWER
    department: str = Field(..., min_length=1, max_length=100)


class UserProfileUpdate(BaseModel):
    # Only these fields may be changed through the profile endpoint
    model_config = ConfigDict(extra="forbid")

    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8)


class UserResponse(UserBase):
    id: int
    role: RoleEnum
    department: Optional[str] = None
    permissions: List[PermissionGrant] = []
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TokenSchema(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
