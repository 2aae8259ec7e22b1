"""
Google-verified signup flow.

    initiate(email)            -> Google consent URL (nothing stored yet)
    callback(code, state)      -> Google identity checked, 6-digit code stored and emailed
    verify_code(email, code, pw) -> account created, session returned, pending record removed

The flow's state is not stored as a field: a pending record in the
VerificationStore means the user is waiting to enter the emailed code.
"""
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.config import Settings, get_settings
from app.exceptions import (
    EmailMismatchError,
    InvalidCredentialsError,
    InvalidInputError,
    InvalidCodeError,
    InvalidStateError,
    ProfileCreationError,
    SessionCreationError,
    TooManyAttemptsError,
    UnverifiedEmailError,
    VerificationExpiredError,
    VerificationNotFoundError,
)
from app.schemas.auth import AuthSession, GoogleProfile, normalize_email
from app.services.accounts import Account, AccountProfile, AccountStore
from app.services.google_oauth import GoogleOAuthClient
from app.services.notifications import Mailer
from app.services.verification_store import PendingVerification, VerificationAction, VerificationStore

log = logging.getLogger("uvicorn.error")


def generate_verification_code() -> str:
    """Uniform over 100000..999999."""
    return str(100000 + secrets.randbelow(900000))


@dataclass
class CallbackResult:
    email: str
    name: str
    expires_at: datetime


@dataclass
class SignupResult:
    account: Account
    profile: GoogleProfile
    session: AuthSession


@dataclass
class PendingStatus:
    email: str
    name: str
    expires_at: datetime
    time_remaining_ms: int


def parse_state(state: str) -> tuple[str, VerificationAction]:
    try:
        parsed = json.loads(state)
    except (TypeError, ValueError) as e:
        raise InvalidStateError(details="Could not parse state JSON") from e
    if not isinstance(parsed, dict):
        raise InvalidStateError(details="State must be a JSON object")
    email = normalize_email(parsed.get("email") if isinstance(parsed.get("email"), str) else "")
    if not email:
        raise InvalidStateError("Invalid state: missing email", details="State parameter must contain email")
    try:
        action = VerificationAction(parsed.get("action") or VerificationAction.signup.value)
    except ValueError as e:
        raise InvalidStateError(f"Invalid state: unsupported action {parsed.get('action')!r}") from e
    return email, action


class SignupService:
    def __init__(
        self,
        store: VerificationStore,
        oauth: GoogleOAuthClient,
        mailer: Mailer,
        accounts: AccountStore,
        settings: Settings | None = None,
    ):
        self.store = store
        self.oauth = oauth
        self.mailer = mailer
        self.accounts = accounts
        self.settings = settings or get_settings()

    @property
    def code_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.verification_code_expire_minutes)

    def initiate(self, email: str) -> str:
        email = normalize_email(email)
        if not email:
            raise InvalidInputError("Email is required")
        url = self.oauth.build_consent_url(email, VerificationAction.signup.value)
        log.info("[Signup] Generated Google auth URL for %s", email)
        return url

    def callback(self, code: str, state: str) -> CallbackResult:
        if not code or not state:
            raise InvalidInputError(
                "Missing authorization code or state",
                details="Both code and state parameters are required",
            )
        email, action = parse_state(state)
        log.info("[Signup] Processing Google callback for %s", email)

        tokens = self.oauth.exchange_code(code)
        profile = self.oauth.fetch_profile(tokens.access_token)

        if profile.email != email:
            log.warning("[Signup] Email mismatch: expected=%s received=%s", email, profile.email)
            raise EmailMismatchError(details=f"Expected {email}, got {profile.email}")
        if not profile.email_verified:
            raise UnverifiedEmailError()

        verification_code = generate_verification_code()
        expires_at = self.store.now() + self.code_ttl
        self.store.put(
            email,
            PendingVerification(
                email=email,
                code=verification_code,
                expires_at=expires_at,
                profile=profile,
                action=action,
            ),
        )
        log.info("[Signup] Verification code stored for %s (expires %s)", email, expires_at.isoformat())

        try:
            sent = self.mailer.send_signup_code_email(
                email,
                verification_code,
                name=profile.name,
                expires_minutes=self.settings.verification_code_expire_minutes,
            )
            if not sent:
                log.warning("[Signup] Verification email not sent to %s; continuing", email)
        except Exception:
            log.exception("[Signup] Email sending failed for %s; continuing", email)

        return CallbackResult(email=email, name=profile.name, expires_at=expires_at)

    def _check_code(self, email: str, code: str) -> PendingVerification:
        if self.store.pop_if_expired(email):
            raise VerificationExpiredError()
        record = self.store.get(email)
        if record is None:
            raise VerificationNotFoundError()
        if not secrets.compare_digest(record.code.encode(), code.encode()):
            attempts = self.store.record_failed_attempt(email)
            limit = self.settings.verification_max_attempts
            if limit and attempts >= limit:
                self.store.delete(email)
                log.warning("[Signup] Too many invalid codes for %s; verification removed", email)
                raise TooManyAttemptsError()
            raise InvalidCodeError()
        return record

    def verify_code(self, email: str, code: str, password: str) -> SignupResult:
        email = normalize_email(email)
        code = (code or "").strip()
        if not email or not code or not password:
            raise InvalidInputError("Email, verification code, and password are required")

        record = self._check_code(email, code)

        profile = AccountProfile.from_google(record.profile)
        if record.account_id is None:
            try:
                account = self.accounts.create_account(email, password, email_confirmed=True, profile=profile)
            except ProfileCreationError as e:
                # The account exists now; remember it so a retry only writes the profile
                self.store.mark_account_created(email, e.account_id)
                raise
            self.store.mark_account_created(email, account.id)
        else:
            # Earlier attempt created the account but could not finish
            account = Account(id=record.account_id, email=email)
            log.info("[Signup] Reusing account %s created by an earlier attempt", account.id)
            self.accounts.create_profile(account, profile)

        try:
            session = self.accounts.create_session(email, password)
        except InvalidCredentialsError as e:
            log.warning("[Signup] Session creation failed for %s: %s", email, e.message)
            raise SessionCreationError(details=e.message) from e

        self.store.delete(email)
        log.info("[Signup] Signup completed for %s (account %s)", email, account.id)
        return SignupResult(account=account, profile=record.profile, session=session)

    def check_status(self, email: str) -> PendingStatus:
        email = normalize_email(email)
        if self.store.pop_if_expired(email):
            raise VerificationExpiredError("Verification expired", status_code=410)
        record = self.store.get(email)
        if record is None:
            raise VerificationNotFoundError("No pending verification found", status_code=404)
        remaining = record.expires_at - self.store.now()
        return PendingStatus(
            email=email,
            name=record.profile.name,
            expires_at=record.expires_at,
            time_remaining_ms=max(0, int(remaining.total_seconds() * 1000)),
        )
