import pytest

from rabhan_auth.models.contractor import Contractor
from rabhan_auth.models.identity import UserType
from rabhan_auth.models.user import User
from rabhan_auth.schemas.auth import ContractorRegisterRequest, RegisterRequest
from rabhan_auth.services.errors import (
    OTPExpiredOrNotFound,
    OTPInvalid,
    RateLimitExceeded,
    TokenExpiredOrNotFound,
)
from rabhan_auth.services.event_notifier import EMAIL_VERIFIED

from conftest import STRONG_PASSWORD


def _register_user(auth_service, email="noura@example.com"):
    return auth_service.register_user(
        RegisterRequest(first_name="Noura", last_name="Saleh", email=email, password=STRONG_PASSWORD)
    )


def test_verification_link_marks_email_verified(container, auth_service, email_service, sender, session_factory):
    user_id = _register_user(auth_service).user.id
    received = []
    container.events.on(EMAIL_VERIFIED, received.append)

    assert email_service.send_verification_email("Noura@Example.com", user_id, "Noura") is True
    to, subject, html = sender.emails[-1]
    assert to == "noura@example.com"
    assert "Hello Noura" in html

    result = email_service.verify_token(sender.last_verification_token())

    assert result == {"user_id": user_id, "email": "noura@example.com"}
    with session_factory() as db:
        assert db.get(User, user_id).email_verified is True
    assert received[0]["email"] == "noura@example.com"


def test_verification_link_is_single_use(email_service, sender):
    email_service.send_verification_email("someone@example.com", "user-1")
    token = sender.last_verification_token()
    email_service.verify_token(token)

    with pytest.raises(TokenExpiredOrNotFound):
        email_service.verify_token(token)


def test_verification_link_expires_after_a_day(email_service, sender, clock):
    email_service.send_verification_email("someone@example.com", "user-1")
    clock.advance(hours=24, seconds=1)

    with pytest.raises(TokenExpiredOrNotFound):
        email_service.verify_token(sender.last_verification_token())


def test_contractor_link_marks_the_contractor_table(auth_service, email_service, sender, session_factory):
    tokens = auth_service.register_contractor(
        ContractorRegisterRequest(
            first_name="Omar",
            last_name="Haddad",
            email="omar@solar.example.com",
            password=STRONG_PASSWORD,
            company_name="Sun Co",
        )
    )

    email_service.send_verification_email("omar@solar.example.com", tokens.user.id, user_type=UserType.CONTRACTOR)
    email_service.verify_token(sender.last_verification_token())

    with session_factory() as db:
        assert db.get(Contractor, tokens.user.id).email_verified is True


def test_template_is_used_when_configured(email_service, sender, test_settings):
    test_settings.SENDGRID_EMAIL_VERIFICATION_TEMPLATE_ID = "d-verify"

    email_service.send_verification_email("someone@example.com", "user-1", "Someone")

    to, template_id, variables = sender.templates[-1]
    assert template_id == "d-verify"
    assert variables["user_name"] == "Someone"
    assert "/verify-email?token=" in variables["verification_url"]
    assert sender.emails == []


def test_email_otp_round_trip(auth_service, email_service, sender, session_factory):
    user_id = _register_user(auth_service).user.id
    email_service.send_otp_email("noura@example.com", user_id)
    otp = sender.last_email_otp()
    wrong = "000000" if otp != "000000" else "111111"

    with pytest.raises(OTPInvalid):
        email_service.verify_otp("noura@example.com", wrong, user_id)
    assert email_service.verify_otp("NOURA@example.com", otp, user_id) is True

    with session_factory() as db:
        assert db.get(User, user_id).email_verified is True
    with pytest.raises(OTPExpiredOrNotFound):
        email_service.verify_otp("noura@example.com", otp, user_id)


def test_email_otp_expires_after_fifteen_minutes(email_service, sender, clock):
    email_service.send_otp_email("someone@example.com")
    clock.advance(minutes=15, seconds=1)

    with pytest.raises(OTPExpiredOrNotFound):
        email_service.verify_otp("someone@example.com", sender.last_email_otp())


def test_links_and_codes_share_one_rate_limit(email_service, clock):
    for _ in range(3):
        email_service.send_verification_email("someone@example.com", "user-1")
    for _ in range(2):
        email_service.send_otp_email("someone@example.com")

    with pytest.raises(RateLimitExceeded):
        email_service.send_otp_email("someone@example.com")

    clock.advance(hours=1, seconds=1)
    assert email_service.send_otp_email("someone@example.com") is True


def test_send_failure_is_reported_not_raised(email_service, sender, store):
    sender.fail = True

    assert email_service.send_otp_email("someone@example.com") is False
    assert store.get("email_otp:someone@example.com") is not None


def test_code_for_another_address_does_not_mark_the_account(
    container, auth_service, email_service, sender, session_factory
):
    victim_id = _register_user(auth_service).user.id
    received = []
    container.events.on(EMAIL_VERIFIED, received.append)

    email_service.send_otp_email("attacker@evil.example.com", victim_id)
    assert email_service.verify_otp("attacker@evil.example.com", sender.last_email_otp(), victim_id) is True

    with session_factory() as db:
        assert db.get(User, victim_id).email_verified is False
    assert received[0]["identity_id"] is None


def test_link_for_another_address_does_not_mark_the_account(auth_service, email_service, sender, session_factory):
    victim_id = _register_user(auth_service).user.id

    email_service.send_verification_email("attacker@evil.example.com", victim_id)
    email_service.verify_token(sender.last_verification_token())

    with session_factory() as db:
        assert db.get(User, victim_id).email_verified is False
