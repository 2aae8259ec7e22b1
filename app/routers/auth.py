"""Login for accounts created through signup."""
from fastapi import APIRouter, Depends

from app.dependencies import get_account_store
from app.schemas.auth import LoginRequest, LoginResponse
from app.services.accounts import AccountStore

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(data: LoginRequest, accounts: AccountStore = Depends(get_account_store)):
    session = accounts.create_session(data.email, data.password)
    return LoginResponse(session=session)
