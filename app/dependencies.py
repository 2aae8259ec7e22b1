"""Shared dependencies: one verification store, OAuth client, mailer and account store per process."""
from functools import lru_cache

from fastapi import Depends

from app.config import get_settings
from app.services.accounts import AccountStore, build_account_store
from app.services.google_oauth import GoogleOAuthClient
from app.services.notifications import Mailer
from app.services.signup import SignupService
from app.services.verification_store import VerificationStore


@lru_cache
def get_verification_store() -> VerificationStore:
    return VerificationStore()


@lru_cache
def get_oauth_client() -> GoogleOAuthClient:
    return GoogleOAuthClient(get_settings())


@lru_cache
def get_mailer() -> Mailer:
    return Mailer(get_settings())


@lru_cache
def get_account_store() -> AccountStore:
    return build_account_store(get_settings())


def get_signup_service(
    store: VerificationStore = Depends(get_verification_store),
    oauth: GoogleOAuthClient = Depends(get_oauth_client),
    mailer: Mailer = Depends(get_mailer),
    accounts: AccountStore = Depends(get_account_store),
) -> SignupService:
    return SignupService(store, oauth, mailer, accounts, settings=get_settings())
