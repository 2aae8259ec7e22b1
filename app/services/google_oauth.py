"""Google OAuth 2.0 authorization-code flow: consent URL, code exchange, userinfo."""
import json
import logging
import os

import httpx
import requests
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from pydantic import ValidationError

from app.config import Settings, get_settings
from app.exceptions import InvalidInputError, ProfileFetchError, TokenExchangeError
from app.schemas.auth import GoogleProfile, OAuthTokens

# Google answers with "openid email profile" style scopes, not the URLs we asked for
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

log = logging.getLogger("uvicorn.error")

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]


class GoogleOAuthClient:
    """Stateless wrapper around Google's OAuth endpoints. Tokens are returned to the caller, never kept.

    token_adapter, when given, is mounted on the token session for https:// (tests use it to stand in for Google).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.Client | None = None,
        token_adapter: requests.adapters.BaseAdapter | None = None,
    ):
        self.settings = settings or get_settings()
        self._http = http_client
        self._token_adapter = token_adapter

    def _client(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=self.settings.http_timeout_seconds)
        return self._http

    def _flow(self) -> Flow:
        # No PKCE: the verifier would have to survive between initiate and callback
        flow = Flow.from_client_config(
            {
                "web": {
                    "client_id": self.settings.google_client_id,
                    "client_secret": self.settings.google_client_secret,
                    "auth_uri": self.settings.google_auth_uri,
                    "token_uri": self.settings.google_token_uri,
                    "redirect_uris": [self.settings.google_redirect_uri],
                }
            },
            scopes=GOOGLE_SCOPES,
            autogenerate_code_verifier=False,
        )
        flow.redirect_uri = self.settings.google_redirect_uri
        if self._token_adapter is not None:
            flow.oauth2session.mount("https://", self._token_adapter)
        return flow

    def is_configured(self) -> bool:
        return bool(self.settings.google_client_id and self.settings.google_client_secret)

    def build_consent_url(self, email: str, action: str) -> str:
        """Consent URL asking for offline access; prompt=consent forces a refresh token every time.
        The state carries {"email", "action"} as JSON so the callback can check who the user meant to be."""
        if not email or not isinstance(email, str):
            raise InvalidInputError("Email is required")
        url, _ = self._flow().authorization_url(
            access_type="offline",
            prompt="consent",
            state=json.dumps({"email": email, "action": action}),
        )
        return url

    def exchange_code(self, code: str) -> OAuthTokens:
        flow = self._flow()
        try:
            token = flow.fetch_token(
                code=code,
                include_client_id=True,
                timeout=self.settings.http_timeout_seconds,
            )
        except OAuth2Error as e:
            reason = e.description or e.error
            log.warning("[Google OAuth] Token exchange rejected: status=%s reason=%s", e.status_code, reason)
            raise TokenExchangeError(details=reason) from e
        except requests.RequestException as e:
            log.warning("[Google OAuth] Token request failed: %s: %s", type(e).__name__, e)
            raise TokenExchangeError(details=str(e)) from e
        try:
            return OAuthTokens.model_validate(dict(token))
        except ValidationError as e:
            raise TokenExchangeError(details="Malformed token response from Google") from e

    def fetch_profile(self, access_token: str) -> GoogleProfile:
        try:
            r = self._client().get(
                self.settings.google_userinfo_uri,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            log.warning("[Google OAuth] Userinfo request failed: %s: %s", type(e).__name__, e)
            raise ProfileFetchError(details=str(e)) from e
        if not 200 <= r.status_code < 300:
            raise ProfileFetchError(details=f"Google API responded with status {r.status_code}")
        try:
            profile = GoogleProfile.model_validate(r.json())
        except (ValueError, ValidationError) as e:
            raise ProfileFetchError(details="Malformed profile returned by Google") from e
        log.info("[Google OAuth] Profile retrieved: email=%s verified=%s", profile.email, profile.email_verified)
        return profile
