"""
Account store: where a verified signup finally becomes an account.

Two backends share the AccountStore interface:
- DatabaseAccountStore keeps users/profiles in our own database (SQLAlchemy,
  bcrypt, JWT access tokens as sessions).
- SupabaseAccountStore delegates to Supabase Auth (admin API) and inserts the
  public profile row through PostgREST.

create_profile is idempotent; the signup flow calls it when retrying for an
account that was created earlier but never got its profile row.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Protocol

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.exceptions import (
    AccountCreationError,
    AccountExistsError,
    InvalidCredentialsError,
    ProfileCreationError,
)
from app.schemas.auth import AuthSession, GoogleProfile

log = logging.getLogger("uvicorn.error")

MIN_PASSWORD_LENGTH = 6


@dataclass
class Account:
    id: str
    email: str


@dataclass
class AccountProfile:
    """Profile fields copied from the Google identity onto the new account."""
    full_name: str = ""
    first_name: str = ""
    last_name: str = ""
    avatar_url: str = ""
    google_id: str = ""
    google_verified: bool = True

    @classmethod
    def from_google(cls, profile: GoogleProfile) -> "AccountProfile":
        return cls(
            full_name=profile.name or "",
            first_name=profile.given_name or "",
            last_name=profile.family_name or "",
            avatar_url=profile.picture or "",
            google_id=profile.id or "",
            google_verified=True,
        )

    def username_for(self, email: str) -> str:
        return self.first_name or email.split("@")[0]


class AccountStore(Protocol):
    def create_account(
        self, email: str, password: str, *, email_confirmed: bool, profile: AccountProfile
    ) -> Account:
        """Create the account and its profile. Raises ProfileCreationError when only the profile failed."""
        ...

    def create_profile(self, account: Account, profile: AccountProfile) -> None:
        ...

    def create_session(self, email: str, password: str) -> AuthSession:
        ...


class DatabaseAccountStore:
    def __init__(self, session_factory: Callable[[], Session] | None = None, settings: Settings | None = None):
        if session_factory is None:
            from app.database import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory
        self.settings = settings or get_settings()

    @staticmethod
    def _profile_row(account_id: int, email: str, profile: AccountProfile):
        from app.models.profile import Profile

        return Profile(
            id=account_id,
            email=email,
            username=profile.username_for(email),
            full_name=profile.full_name,
            first_name=profile.first_name,
            last_name=profile.last_name,
            avatar_url=profile.avatar_url,
            google_verified=profile.google_verified,
            google_id=profile.google_id,
        )

    def create_account(
        self, email: str, password: str, *, email_confirmed: bool, profile: AccountProfile
    ) -> Account:
        from app.models.user import User
        from app.services.auth import get_password_hash

        db = self._session_factory()
        try:
            if db.query(User).filter(User.email == email).first():
                raise AccountExistsError()
            if len(password or "") < MIN_PASSWORD_LENGTH:
                raise AccountCreationError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters")
            user = User(
                email=email,
                hashed_password=get_password_hash(password),
                email_verified=email_confirmed,
            )
            db.add(user)
            db.flush()
            # Same transaction as the user, so a profile failure never leaves half an account
            db.add(self._profile_row(user.id, email, profile))
            db.commit()
            db.refresh(user)
            log.info("[Accounts] Created user id=%s email=%s", user.id, email)
            return Account(id=str(user.id), email=user.email)
        except IntegrityError as e:
            db.rollback()
            raise AccountExistsError() from e
        except SQLAlchemyError as e:
            db.rollback()
            log.exception("[Accounts] Database error creating %s", email)
            raise AccountCreationError(details=str(e)) from e
        finally:
            db.close()

    def create_profile(self, account: Account, profile: AccountProfile) -> None:
        from app.models.profile import Profile

        db = self._session_factory()
        try:
            if db.query(Profile).filter(Profile.id == int(account.id)).first():
                return
            db.add(self._profile_row(int(account.id), account.email, profile))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise ProfileCreationError(details=str(e), account_id=account.id) from e
        finally:
            db.close()

    def create_session(self, email: str, password: str) -> AuthSession:
        from app.models.user import User
        from app.services.auth import create_access_token, verify_password

        db = self._session_factory()
        try:
            user = db.query(User).filter(User.email == email).first()
            if not user or not verify_password(password, user.hashed_password):
                raise InvalidCredentialsError()
            token, expires_at = create_access_token(user.id, user.email)
        finally:
            db.close()
        return AuthSession(
            access_token=token,
            token_type="bearer",
            expires_in=self.settings.jwt_access_token_expire_minutes * 60,
            expires_at=int(expires_at.timestamp()),
        )


_DUPLICATE_MARKERS = ("already been registered", "already registered", "duplicate key value", "already exists")


def _supabase_error(response: httpx.Response) -> tuple[str, str]:
    """(code, message) from a Supabase Auth / PostgREST error body."""
    try:
        body = response.json() or {}
    except ValueError:
        return "", response.text[:300] or f"Supabase responded with status {response.status_code}"
    if not isinstance(body, dict):
        return "", f"Supabase responded with status {response.status_code}"
    code = str(body.get("error_code") or body.get("code") or "")
    message = (
        body.get("msg")
        or body.get("message")
        or body.get("error_description")
        or body.get("error")
        or f"Supabase responded with status {response.status_code}"
    )
    return code, str(message)


class SupabaseAccountStore:
    def __init__(self, settings: Settings | None = None, http_client: httpx.Client | None = None):
        self.settings = settings or get_settings()
        self._http = http_client

    def _client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=self.settings.http_timeout_seconds)
        return self._http

    def _admin_headers(self) -> dict[str, str]:
        key = self.settings.supabase_service_role_key
        return {"apikey": key, "Authorization": f"Bearer {key}"}

    def create_account(
        self, email: str, password: str, *, email_confirmed: bool, profile: AccountProfile
    ) -> Account:
        payload = {
            "email": email,
            "password": password,
            "email_confirm": email_confirmed,
            "user_metadata": {
                "full_name": profile.full_name,
                "first_name": profile.first_name,
                "last_name": profile.last_name,
                "avatar_url": profile.avatar_url,
                "google_verified": profile.google_verified,
                "google_id": profile.google_id,
            },
        }
        try:
            r = self._client().post(
                f"{self.settings.supabase_url}/auth/v1/admin/users",
                json=payload,
                headers=self._admin_headers(),
            )
        except httpx.HTTPError as e:
            raise AccountCreationError(details=str(e)) from e
        if not 200 <= r.status_code < 300:
            code, message = _supabase_error(r)
            log.warning("[Accounts] Supabase signup error: status=%s code=%s msg=%s", r.status_code, code, message)
            if code == "email_exists" or any(m in message.lower() for m in _DUPLICATE_MARKERS):
                raise AccountExistsError()
            raise AccountCreationError(message)
        try:
            body = r.json() or {}
            user = body.get("user") or body
            account = Account(id=str(user["id"]), email=user.get("email") or email)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            log.warning("[Accounts] Malformed Supabase admin response: %s", r.text[:300])
            raise AccountCreationError("Malformed user returned by Supabase") from e
        log.info("[Accounts] Supabase auth user created: %s", account.id)

        self.create_profile(account, profile)
        return account

    def create_profile(self, account: Account, profile: AccountProfile) -> None:
        row = {
            "id": account.id,
            "email": account.email,
            "username": profile.username_for(account.email),
            "fullName": profile.full_name,
            "pfpUrl": profile.avatar_url,
            "google_verified": profile.google_verified,
            "google_id": profile.google_id,
        }
        # Upsert on the primary key so a retry after a partial failure is harmless
        headers = {**self._admin_headers(), "Prefer": "resolution=merge-duplicates,return=minimal"}
        try:
            r = self._client().post(f"{self.settings.supabase_url}/rest/v1/profiles", json=[row], headers=headers)
        except httpx.HTTPError as e:
            raise ProfileCreationError(details=str(e), account_id=account.id) from e
        if not 200 <= r.status_code < 300:
            _, message = _supabase_error(r)
            log.warning("[Accounts] Profile creation error for %s: %s", account.id, message)
            raise ProfileCreationError(message, account_id=account.id)

    def create_session(self, email: str, password: str) -> AuthSession:
        key = self.settings.supabase_anon_key or self.settings.supabase_service_role_key
        try:
            r = self._client().post(
                f"{self.settings.supabase_url}/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
                headers={"apikey": key},
            )
        except httpx.HTTPError as e:
            raise InvalidCredentialsError(details=str(e)) from e
        if not 200 <= r.status_code < 300:
            _, message = _supabase_error(r)
            raise InvalidCredentialsError(message)
        try:
            return AuthSession.model_validate(r.json())
        except (ValueError, ValidationError) as e:
            raise InvalidCredentialsError("Malformed session returned by Supabase") from e


def build_account_store(settings: Settings | None = None) -> AccountStore:
    settings = settings or get_settings()
    if settings.account_store_backend == "supabase":
        return SupabaseAccountStore(settings)
    return DatabaseAccountStore(settings=settings)
