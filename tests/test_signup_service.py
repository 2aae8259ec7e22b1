import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import signup_state
from app.exceptions import (
    AccountExistsError,
    EmailMismatchError,
    InvalidCodeError,
    InvalidInputError,
    InvalidStateError,
    ProfileCreationError,
    ProfileFetchError,
    SessionCreationError,
    TokenExchangeError,
    TooManyAttemptsError,
    UnverifiedEmailError,
    VerificationExpiredError,
    VerificationNotFoundError,
)
from app.services.signup import SignupService, generate_verification_code, parse_state
from app.services.verification_store import VerificationAction


def _complete_callback(service, email="ada@school.edu"):
    return service.callback("4/0Aauth-code", signup_state(email))


def test_generate_verification_code_is_six_digits():
    for _ in range(200):
        code = generate_verification_code()
        assert len(code) == 6
        assert code.isdigit()
        assert 100000 <= int(code) <= 999999


@pytest.mark.parametrize("state", ["not json", "[]", "{}", json.dumps({"email": ""}), json.dumps({"action": "signup"})])
def test_parse_state_rejects_bad_state(state):
    with pytest.raises(InvalidStateError):
        parse_state(state)


def test_parse_state_rejects_unknown_action():
    with pytest.raises(InvalidStateError):
        parse_state(json.dumps({"email": "ada@school.edu", "action": "delete-account"}))


def test_parse_state_normalizes_email():
    assert parse_state(json.dumps({"email": " Ada@School.EDU ", "action": "signup"})) == (
        "ada@school.edu",
        VerificationAction.signup,
    )


def test_initiate_returns_consent_url_without_storing(service, store):
    url = service.initiate("Ada@School.edu")
    state = parse_qs(urlparse(url).query)["state"][0]
    assert json.loads(state) == {"email": "ada@school.edu", "action": "signup"}
    assert len(store) == 0


def test_initiate_requires_email(service):
    with pytest.raises(InvalidInputError):
        service.initiate("   ")


def test_callback_stores_code_and_emails_it(service, store, clock, mailer):
    result = _complete_callback(service)

    record = store.get("ada@school.edu")
    assert record is not None
    assert len(record.code) == 6 and record.code.isdigit()
    assert record.expires_at == clock() + timedelta(minutes=10)
    assert record.action is VerificationAction.signup
    assert record.profile.id == "109876543210"

    assert result.email == "ada@school.edu"
    assert result.name == "Ada Lovelace"
    assert result.expires_at == record.expires_at
    assert not hasattr(result, "code")

    assert mailer.sent == [
        {"to": "ada@school.edu", "code": record.code, "name": "Ada Lovelace", "expires_minutes": 10}
    ]


def test_callback_replaces_pending_record(service, store):
    _complete_callback(service)
    first = store.get("ada@school.edu")
    _complete_callback(service)
    assert store.get("ada@school.edu") is not first
    assert len(store) == 1


def test_callback_email_mismatch_creates_nothing(service, store, google, mailer):
    google.profile["email"] = "b@x.com"
    with pytest.raises(EmailMismatchError) as exc:
        service.callback("code", signup_state("a@x.com"))
    assert "a@x.com" in exc.value.details
    assert store.get("a@x.com") is None
    assert store.get("b@x.com") is None
    assert len(store) == 0
    assert mailer.sent == []


def test_callback_unverified_google_email(service, store, google):
    google.profile["verified_email"] = False
    with pytest.raises(UnverifiedEmailError):
        _complete_callback(service)
    assert len(store) == 0


def test_callback_invalid_state_skips_google(service, google):
    with pytest.raises(InvalidStateError):
        service.callback("code", "{broken")
    assert google.token_requests == []


def test_callback_missing_params(service):
    with pytest.raises(InvalidInputError):
        service.callback("", signup_state())


def test_callback_token_exchange_failure(service, store, google):
    google.token_status = 400
    with pytest.raises(TokenExchangeError):
        _complete_callback(service)
    assert len(store) == 0


def test_callback_profile_fetch_failure(service, store, google):
    google.userinfo_status = 503
    with pytest.raises(ProfileFetchError):
        _complete_callback(service)
    assert len(store) == 0


def test_callback_succeeds_when_email_dispatch_raises(service, store, mailer):
    mailer.raise_error = True
    result = _complete_callback(service)
    assert result.email == "ada@school.edu"
    assert store.get("ada@school.edu") is not None


def test_callback_succeeds_when_email_not_sent(service, store, mailer):
    mailer.result = False
    _complete_callback(service)
    assert store.get("ada@school.edu") is not None


def test_verify_code_creates_account_and_session_once(service, store, accounts):
    _complete_callback(service)
    code = store.get("ada@school.edu").code

    result = service.verify_code("ada@school.edu", code, "secret1")
    assert result.account.email == "ada@school.edu"
    assert result.session.access_token == f"token-for-{result.account.id}"
    assert store.get("ada@school.edu") is None

    created = accounts.accounts["ada@school.edu"]
    assert created["email_confirmed"] is True
    assert created["profile"].full_name == "Ada Lovelace"
    assert created["profile"].first_name == "Ada"
    assert created["profile"].avatar_url == "https://lh3.googleusercontent.com/a/ada"
    assert created["profile"].google_id == "109876543210"
    assert created["profile"].google_verified is True

    with pytest.raises(VerificationNotFoundError):
        service.verify_code("ada@school.edu", code, "secret1")


def test_verify_code_without_callback(service):
    with pytest.raises(VerificationNotFoundError):
        service.verify_code("ada@school.edu", "123456", "secret1")


def test_wrong_code_keeps_record_until_expiry(service, store, clock, accounts):
    _complete_callback(service)
    code = store.get("ada@school.edu").code
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(10):
        with pytest.raises(InvalidCodeError):
            service.verify_code("ada@school.edu", wrong, "secret1")
        clock.advance(30)
    assert store.get("ada@school.edu") is not None
    assert accounts.create_calls == 0

    result = service.verify_code("ada@school.edu", code, "secret1")
    assert result.account.email == "ada@school.edu"


def test_verify_code_after_expiry(service, store, clock):
    _complete_callback(service)
    code = store.get("ada@school.edu").code
    clock.advance(601)
    with pytest.raises(VerificationExpiredError):
        service.verify_code("ada@school.edu", code, "secret1")
    assert "ada@school.edu" not in store
    with pytest.raises(VerificationNotFoundError):
        service.verify_code("ada@school.edu", code, "secret1")


def test_verify_code_normalizes_email_and_code(service, store):
    _complete_callback(service)
    code = store.get("ada@school.edu").code
    result = service.verify_code(" ADA@school.edu ", f" {code} ", "secret1")
    assert result.account.email == "ada@school.edu"


def test_verify_code_existing_account(service, store, accounts):
    _complete_callback(service)
    code = store.get("ada@school.edu").code
    accounts.create_account("ada@school.edu", "other-pass", email_confirmed=True, profile=None)
    with pytest.raises(AccountExistsError) as exc:
        service.verify_code("ada@school.edu", code, "secret1")
    assert "log in" in exc.value.message


def test_session_failure_then_retry_skips_account_creation(service, store, accounts):
    _complete_callback(service)
    code = store.get("ada@school.edu").code
    accounts.fail_sessions = 1

    with pytest.raises(SessionCreationError):
        service.verify_code("ada@school.edu", code, "secret1")
    record = store.get("ada@school.edu")
    assert record is not None
    assert record.account_id == "user-1"

    result = service.verify_code("ada@school.edu", code, "secret1")
    assert result.account.id == "user-1"
    assert accounts.create_calls == 1
    assert store.get("ada@school.edu") is None


def test_profile_failure_then_retry_writes_only_profile(service, store, accounts):
    _complete_callback(service)
    code = store.get("ada@school.edu").code
    accounts.fail_profiles = 1

    with pytest.raises(ProfileCreationError) as exc:
        service.verify_code("ada@school.edu", code, "secret1")
    assert exc.value.account_id == "user-1"
    record = store.get("ada@school.edu")
    assert record is not None
    assert record.account_id == "user-1"
    assert accounts.accounts["ada@school.edu"]["profile"] is None

    result = service.verify_code("ada@school.edu", code, "secret1")
    assert result.account.id == "user-1"
    assert result.session.access_token == "token-for-user-1"
    assert accounts.create_calls == 1
    assert accounts.profile_calls == 1
    assert accounts.accounts["ada@school.edu"]["profile"].google_id == "109876543210"
    assert store.get("ada@school.edu") is None


def test_attempt_limit_when_enabled(store, oauth, mailer, accounts, settings):
    settings.verification_max_attempts = 3
    service = SignupService(store, oauth, mailer, accounts, settings=settings)
    _complete_callback(service)
    code = store.get("ada@school.edu").code
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(2):
        with pytest.raises(InvalidCodeError):
            service.verify_code("ada@school.edu", wrong, "secret1")
    with pytest.raises(TooManyAttemptsError):
        service.verify_code("ada@school.edu", wrong, "secret1")
    with pytest.raises(VerificationNotFoundError):
        service.verify_code("ada@school.edu", code, "secret1")


def test_check_status(service, store, clock):
    _complete_callback(service)
    clock.advance(60)
    status = service.check_status("ada@school.edu")
    assert status.email == "ada@school.edu"
    assert status.name == "Ada Lovelace"
    assert status.time_remaining_ms == 540_000
    assert status.expires_at == store.get("ada@school.edu").expires_at


def test_check_status_missing_and_expired(service, clock):
    with pytest.raises(VerificationNotFoundError) as missing:
        service.check_status("ada@school.edu")
    assert missing.value.status_code == 404

    _complete_callback(service)
    clock.advance(600)
    with pytest.raises(VerificationExpiredError) as expired:
        service.check_status("ada@school.edu")
    assert expired.value.status_code == 410
