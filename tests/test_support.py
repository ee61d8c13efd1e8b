import json
import logging

import pytest

from rabhan_auth.config import Settings
from rabhan_auth.services.audit_log import Severity, log_security_event
from rabhan_auth.services.ephemeral_store import MemoryStore, build_store
from rabhan_auth.services.errors import InvalidToken, WeakPassword
from rabhan_auth.services.password_service import (
    PasswordHasher,
    generate_secure_token,
    password_policy_errors,
    validate_password,
)
from rabhan_auth.services.rate_limiter import RateLimiter
from rabhan_auth.services.token_service import TokenService
from rabhan_auth.utils.logging import StructuredFormatter
from rabhan_auth.utils.response import handle_exception

from conftest import STRONG_PASSWORD, FakeClock


@pytest.mark.parametrize(
    "password, valid",
    [
        (STRONG_PASSWORD, True),
        ("Sh0rt!", False),
        ("alllowercase1!", False),
        ("NoDigits!Here", False),
        ("NoSpecial123", False),
        ("Has Space1!", False),
        ("A1!" + "a" * 70, False),
    ],
)
def test_password_policy(password, valid):
    assert (password_policy_errors(password) == []) is valid


def test_validate_password_raises_with_reasons():
    with pytest.raises(WeakPassword) as excinfo:
        validate_password("short")

    assert len(excinfo.value.reasons) == 2


def test_hasher_round_trip():
    hasher = PasswordHasher(rounds=4)
    hashed = hasher.hash(STRONG_PASSWORD)

    assert hashed != STRONG_PASSWORD
    assert hasher.verify(STRONG_PASSWORD, hashed) is True
    assert hasher.verify("Wr0ng!Pass", hashed) is False
    assert hasher.verify(STRONG_PASSWORD, "not-a-bcrypt-hash") is False


def test_secure_token_is_alphanumeric():
    token = generate_secure_token(32)

    assert len(token) == 32
    assert token.isalnum()
    assert token != generate_secure_token(32)


def test_memory_store_expiry():
    clock = FakeClock()
    store = MemoryStore(clock)
    store.set_with_ttl("key", "", 10)

    assert store.get("key") == ""
    clock.advance(seconds=10)
    assert store.get("key") is None
    assert store.get("missing") is None


def test_build_store_memory_url():
    assert isinstance(build_store("memory://"), MemoryStore)


def test_rate_limiter_window_restarts_on_write():
    clock = FakeClock()
    limiter = RateLimiter(MemoryStore(clock), "otp", limit=2, window_seconds=60)
    limiter.increment("+966501234567")
    clock.advance(seconds=50)
    limiter.increment("+966501234567")

    clock.advance(seconds=50)
    assert limiter.attempts("+966501234567") == 2

    clock.advance(seconds=11)
    assert limiter.attempts("+966501234567") == 0


def test_token_service_pair():
    service = TokenService("access-secret", "refresh-secret", access_minutes=15, refresh_days=7)
    pair = service.issue_pair("identity-1", "sara@example.com", "USER", "session-1")

    access = service.verify_access_token(pair.access_token)
    refresh = service.verify_refresh_token(pair.refresh_token)

    assert access["sub"] == refresh["sub"] == "identity-1"
    assert access["sid"] == "session-1"
    assert access["jti"] != refresh["jti"]
    assert pair.expires_in == 900
    with pytest.raises(InvalidToken):
        service.verify_access_token(pair.refresh_token)
    with pytest.raises(InvalidToken):
        TokenService("other-secret", "refresh-secret").verify_access_token(pair.access_token)


def test_production_settings_refuse_dev_conveniences():
    settings = Settings()
    settings.ENVIRONMENT = "production"
    settings.JWT_SECRET = "secret"
    settings.JWT_REFRESH_SECRET = "refresh"
    settings.EPHEMERAL_STORE_URL = "redis://cache:6379/0"
    settings.USE_DUMMY_OTP = True
    settings.DEV_LOGIN_BYPASS_ENABLED = False

    with pytest.raises(RuntimeError, match="USE_DUMMY_OTP"):
        settings.validate()

    settings.USE_DUMMY_OTP = False
    settings.validate()
    assert settings.dummy_otp_enabled is False


def test_structured_formatter_includes_audit_context(caplog):
    formatter = StructuredFormatter("auth-service", as_json=True)
    with caplog.at_level(logging.WARNING, logger="rabhan_auth.audit"):
        log_security_event("PHONE_OTP_INVALID", Severity.MEDIUM, phone_number="+966501234567")

    payload = json.loads(formatter.format(caplog.records[-1]))

    assert payload["service"] == "auth-service"
    assert payload["event_type"] == "PHONE_OTP_INVALID"
    assert payload["severity"] == "MEDIUM"
    assert payload["context"]["data"]["phone_number"] == "+966501234567"


def test_unexpected_errors_become_500():
    response = handle_exception(RuntimeError("boom"))

    assert response.status_code == 500
    assert json.loads(response.body)["message"] == "Internal server error"
