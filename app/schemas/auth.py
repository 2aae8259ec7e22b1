"""Auth schemas: Google identity payloads, sessions, login."""
from pydantic import BaseModel, EmailStr, Field, field_validator


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


class GoogleProfile(BaseModel):
    """Profile returned by Google's userinfo endpoint, validated once at the boundary."""
    id: str
    email: str
    email_verified: bool = Field(default=False, alias="verified_email")
    name: str = ""
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None

    class Config:
        populate_by_name = True
        extra = "ignore"

    @field_validator("id", mode="before")
    @classmethod
    def id_as_str(cls, v) -> str:
        return str(v) if v is not None else ""

    @field_validator("email")
    @classmethod
    def email_lower(cls, v: str) -> str:
        return normalize_email(v)


class OAuthTokens(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None
    scope: list[str] | str | None = None
    id_token: str | None = None

    class Config:
        extra = "ignore"


class AuthSession(BaseModel):
    """Session handed to the client after signup or login."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: int | None = None
    refresh_token: str | None = None

    class Config:
        extra = "ignore"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def email_normalized(cls, v):
        v = normalize_email(v)
        if not v:
            raise ValueError("Email is required")
        return v

    @field_validator("password")
    @classmethod
    def password_present(cls, v: str) -> str:
        if not v:
            raise ValueError("Password is required")
        return v


class LoginResponse(BaseModel):
    message: str = "Logged in successfully."
    session: AuthSession
