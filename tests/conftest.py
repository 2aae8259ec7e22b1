import os

# Must be set before anything imports app.config / app.database
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["ACCOUNT_STORE_BACKEND"] = "database"
os.environ["MAILGUN_API_KEY"] = ""
os.environ["MAILGUN_DOMAIN"] = ""
os.environ["SENDGRID_API_KEY"] = ""

import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
import requests

from app.config import Settings
from app.exceptions import AccountExistsError, InvalidCredentialsError, ProfileCreationError
from app.schemas.auth import AuthSession
from app.services.accounts import Account
from app.services.google_oauth import GoogleOAuthClient
from app.services.signup import SignupService
from app.services.verification_store import VerificationStore

TOKEN_URI = "https://oauth2.googleapis.com/token"
USERINFO_URI = "https://www.googleapis.com/oauth2/v2/userinfo"


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class GoogleStub:
    """Stands in for Google's token and userinfo endpoints."""

    def __init__(self):
        self.profile = {
            "id": "109876543210",
            "email": "ada@school.edu",
            "verified_email": True,
            "name": "Ada Lovelace",
            "given_name": "Ada",
            "family_name": "Lovelace",
            "picture": "https://lh3.googleusercontent.com/a/ada",
        }
        self.token_status = 200
        self.token_error = {"error": "invalid_grant", "error_description": "Bad Request"}
        self.userinfo_status = 200
        self.token_requests: list[dict] = []
        self.userinfo_auth: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(TOKEN_URI):
            self.token_requests.append({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
            if self.token_status != 200:
                return httpx.Response(self.token_status, json=self.token_error)
            return httpx.Response(
                200,
                json={
                    "access_token": "ya29.access",
                    "refresh_token": "1//refresh",
                    "expires_in": 3599,
                    "token_type": "Bearer",
                    "scope": "openid email profile",
                },
            )
        if url.startswith(USERINFO_URI):
            self.userinfo_auth.append(request.headers.get("Authorization", ""))
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status, json={"error": "unauthorized"})
            return httpx.Response(200, json=self.profile)
        return httpx.Response(404)


class StubAdapter(requests.adapters.BaseAdapter):
    """Routes requests-based calls (the oauthlib token exchange) into an httpx-style stub handler."""

    def __init__(self, handler):
        super().__init__()
        self.handler = handler

    def send(self, request, **kwargs):
        body = request.body or b""
        if isinstance(body, str):
            body = body.encode()
        reply = self.handler(httpx.Request(request.method, request.url, headers=dict(request.headers), content=body))
        response = requests.Response()
        response.status_code = reply.status_code
        response.headers.update(dict(reply.headers))
        response._content = reply.content
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


class FakeMailer:
    def __init__(self):
        self.sent: list[dict] = []
        self.raise_error = False
        self.result = True

    def send_signup_code_email(self, to_email, code, name=None, expires_minutes=10):
        if self.raise_error:
            raise RuntimeError("SMTP relay unreachable")
        self.sent.append({"to": to_email, "code": code, "name": name, "expires_minutes": expires_minutes})
        return self.result


class FakeAccounts:
    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.fail_sessions = 0
        self.fail_profiles = 0
        self.create_calls = 0
        self.profile_calls = 0

    def create_account(self, email, password, *, email_confirmed, profile):
        self.create_calls += 1
        if email in self.accounts:
            raise AccountExistsError()
        account = Account(id=f"user-{len(self.accounts) + 1}", email=email)
        self.accounts[email] = {
            "account": account,
            "password": password,
            "email_confirmed": email_confirmed,
            "profile": None,
        }
        self._write_profile(account, profile)
        return account

    def create_profile(self, account, profile):
        self.profile_calls += 1
        self._write_profile(account, profile)

    def _write_profile(self, account, profile):
        if self.fail_profiles:
            self.fail_profiles -= 1
            raise ProfileCreationError("profiles table unavailable", account_id=account.id)
        self.accounts[account.email]["profile"] = profile

    def create_session(self, email, password):
        if self.fail_sessions:
            self.fail_sessions -= 1
            raise InvalidCredentialsError("Auth service unavailable")
        entry = self.accounts.get(email)
        if not entry or entry["password"] != password:
            raise InvalidCredentialsError()
        return AuthSession(access_token=f"token-for-{entry['account'].id}", expires_in=3600)


@pytest.fixture
def settings():
    return Settings(
        google_client_id="client-123.apps.googleusercontent.com",
        google_client_secret="google-secret",
        google_redirect_uri="http://localhost:3000/auth/callback",
        mailgun_api_key="",
        mailgun_domain="",
        sendgrid_api_key="",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return VerificationStore(clock=clock)


@pytest.fixture
def google():
    return GoogleStub()


@pytest.fixture
def oauth(settings, google):
    return GoogleOAuthClient(
        settings,
        http_client=httpx.Client(transport=httpx.MockTransport(google.handler)),
        token_adapter=StubAdapter(google.handler),
    )


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def accounts():
    return FakeAccounts()


@pytest.fixture
def service(store, oauth, mailer, accounts, settings):
    return SignupService(store, oauth, mailer, accounts, settings=settings)


def signup_state(email="ada@school.edu", action="signup") -> str:
    return json.dumps({"email": email, "action": action})
