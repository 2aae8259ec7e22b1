"""
Signup flow errors.

Every error carries the HTTP status it maps to; main.py renders them as
{"error": message, "details": ...}.
"""
from typing import Any


class SignupError(Exception):
    """Base class for all errors surfaced by the signup and auth routes."""

    status_code: int = 400
    default_message: str = "Signup failed"

    def __init__(
        self,
        message: str | None = None,
        details: Any = None,
        status_code: int | None = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInputError(SignupError):
    default_message = "Invalid request"


class InvalidStateError(SignupError):
    default_message = "Invalid state parameter"


class TokenExchangeError(SignupError):
    default_message = "Failed to exchange authorization code"


class ProfileFetchError(SignupError):
    status_code = 500
    default_message = "Failed to fetch user info from Google"


class EmailMismatchError(SignupError):
    default_message = "Email mismatch. Please use the same email address."


class UnverifiedEmailError(SignupError):
    default_message = "Google email is not verified. Please verify your email with Google first."


class VerificationNotFoundError(SignupError):
    default_message = "Verification code expired or not found. Please restart the signup process."


class VerificationExpiredError(SignupError):
    default_message = "Verification code has expired. Please restart the signup process."


class InvalidCodeError(SignupError):
    default_message = "Invalid verification code. Please check and try again."


class TooManyAttemptsError(SignupError):
    status_code = 429
    default_message = "Too many invalid verification attempts. Please restart the signup process."


class AccountExistsError(SignupError):
    default_message = "User already exists. Please log in instead."


class AccountCreationError(SignupError):
    default_message = "Failed to create account"


class ProfileCreationError(AccountCreationError):
    """The account itself exists, only its profile row could not be written."""

    default_message = "Failed to create profile"

    def __init__(self, message: str | None = None, details: Any = None, *, account_id: str):
        super().__init__(message, details)
        self.account_id = account_id


class SessionCreationError(SignupError):
    default_message = "Your account was created, but signing in failed. Please log in manually."


class InvalidCredentialsError(SignupError):
    status_code = 401
    default_message = "Invalid email or password"
