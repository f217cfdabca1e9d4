from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .auth.core import normalize_email


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> Any:
        return normalize_email(v) if isinstance(v, str) else v


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., alias="firstName", min_length=1, max_length=50)
    last_name: str = Field(..., alias="lastName", min_length=1, max_length=50)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> Any:
        return normalize_email(v) if isinstance(v, str) else v


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class UserPublic(BaseModel):
    """Non-sensitive user fields. Never carries the password hash."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    email: str
    first_name: str = Field(serialization_alias="firstName")
    last_name: str = Field(serialization_alias="lastName")
    role: str

    @classmethod
    def from_user(cls, user) -> "UserPublic":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
        )


class LoginResponse(BaseModel):
    success: bool = True
    user: UserPublic


class RegisterData(BaseModel):
    user: UserPublic
    token: str


class RegisterResponse(BaseModel):
    success: bool = True
    message: str = "Admin registered successfully"
    data: RegisterData


class MeData(BaseModel):
    user: UserPublic


class MeResponse(BaseModel):
    success: bool = True
    data: MeData


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class LoginAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    ip_address: str
    user_agent: str
    success: bool
    failure_reason: Optional[str] = None
    user_id: Optional[int] = None
    created_at: datetime


class LoginAttemptList(BaseModel):
    success: bool = True
    data: List[LoginAttemptRead]


class IpStatus(BaseModel):
    ip_address: str
    failures: int
    since: datetime
    blocked: bool
