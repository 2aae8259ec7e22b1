"""Signup flow request/response schemas. Wire format is camelCase for the React client."""
from datetime import datetime

from pydantic import BaseModel, EmailStr, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.schemas.auth import AuthSession, normalize_email


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class _EmailRequest(BaseModel):
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def email_normalized(cls, v):
        v = normalize_email(v)
        if not v:
            raise ValueError("Email is required")
        return v


class InitiateSignupRequest(_EmailRequest):
    pass


class InitiateSignupResponse(CamelModel):
    message: str = "Redirect to Google for authorization"
    auth_url: str
    email: str


class CallbackRequest(BaseModel):
    code: str = ""
    state: str = ""

    @model_validator(mode="after")
    def code_and_state_present(self):
        if not self.code.strip() or not self.state.strip():
            raise ValueError("Missing authorization code or state")
        return self


class CallbackResponse(CamelModel):
    message: str = "Google verification successful. Check your email for the final verification code."
    email: str
    name: str
    google_verified: bool = True
    code_expires: datetime


class VerifyCodeRequest(_EmailRequest):
    code: str = ""
    password: str = ""

    @field_validator("code")
    @classmethod
    def code_stripped(cls, v: str) -> str:
        return (v or "").strip()

    @model_validator(mode="after")
    def all_present(self):
        if not self.code or not self.password:
            raise ValueError("Email, verification code, and password are required")
        return self


class SignupUser(CamelModel):
    id: str
    email: str
    full_name: str = ""
    avatar: str = ""
    google_verified: bool = True


class VerifyCodeResponse(CamelModel):
    message: str = "Signup completed successfully!"
    user: SignupUser
    session: AuthSession


class CheckStatusRequest(_EmailRequest):
    pass


class CheckStatusResponse(CamelModel):
    has_verification: bool = True
    email: str
    name: str
    expires_at: datetime
    time_remaining_ms: int
