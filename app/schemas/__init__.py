from app.schemas.auth import AuthSession, GoogleProfile, LoginRequest, LoginResponse, OAuthTokens
from app.schemas.signup import (
    CallbackRequest,
    CallbackResponse,
    CheckStatusRequest,
    CheckStatusResponse,
    InitiateSignupRequest,
    InitiateSignupResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
