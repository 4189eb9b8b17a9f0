"""Auth request/response bodies. Wire format is camelCase; Python attributes stay snake_case."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from app.config import settings


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterBody(CamelModel):
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("password")
    @classmethod
    def password_long_enough(cls, v: str) -> str:
        if len(v) < settings.password_min_length:
            raise ValueError(f"must be at least {settings.password_min_length} characters")
        return v


class LoginBody(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class RefreshBody(CamelModel):
    refresh_token: str = Field(min_length=1)


class UserOut(CamelModel):
    id: int
    email: str
    role: str


class ProfileOut(UserOut):
    is_active: bool
    last_login: datetime | None = None
    created_at: datetime | None = None


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until access token expires
    access_token_expiry: str
    refresh_token_expiry: str


class AuthResponse(CamelModel):
    message: str
    user: UserOut
    tokens: TokenPair


class RefreshResponse(CamelModel):
    message: str
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    access_token_expiry: str


class ProfileResponse(CamelModel):
    user: ProfileOut


class MessageResponse(CamelModel):
    message: str


class RevokeSessionsResponse(CamelModel):
    message: str
    revoked: int
