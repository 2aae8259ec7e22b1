"""Google-verified signup: initiate, OAuth callback, code verification, status."""
from fastapi import APIRouter, Depends

from app.dependencies import get_signup_service
from app.schemas.signup import (
    CallbackRequest,
    CallbackResponse,
    CheckStatusRequest,
    CheckStatusResponse,
    InitiateSignupRequest,
    InitiateSignupResponse,
    SignupUser,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from app.services.signup import SignupService

router = APIRouter(prefix="/signup", tags=["signup"])


@router.post("/initiate", response_model=InitiateSignupResponse)
def initiate_signup(data: InitiateSignupRequest, service: SignupService = Depends(get_signup_service)):
    auth_url = service.initiate(data.email)
    return InitiateSignupResponse(auth_url=auth_url, email=data.email)


@router.post("/callback", response_model=CallbackResponse)
def google_callback(data: CallbackRequest, service: SignupService = Depends(get_signup_service)):
    """Exchange Google's code, confirm the Google email matches, then email a verification code."""
    result = service.callback(data.code.strip(), data.state.strip())
    return CallbackResponse(email=result.email, name=result.name, code_expires=result.expires_at)


@router.post("/verify-code", response_model=VerifyCodeResponse)
def verify_code(data: VerifyCodeRequest, service: SignupService = Depends(get_signup_service)):
    result = service.verify_code(data.email, data.code, data.password)
    return VerifyCodeResponse(
        user=SignupUser(
            id=result.account.id,
            email=result.account.email,
            full_name=result.profile.name or "",
            avatar=result.profile.picture or "",
            google_verified=True,
        ),
        session=result.session,
    )


@router.post("/check-status", response_model=CheckStatusResponse)
def check_status(data: CheckStatusRequest, service: SignupService = Depends(get_signup_service)):
    status = service.check_status(data.email)
    return CheckStatusResponse(
        email=status.email,
        name=status.name,
        expires_at=status.expires_at,
        time_remaining_ms=status.time_remaining_ms,
    )
