import logging

from rabhan_auth.models.user import User

from conftest import STRONG_PASSWORD


def _register(client, **overrides):
    body = {
        "first_name": "Sara",
        "last_name": "Ali",
        "email": "sara@example.com",
        "password": STRONG_PASSWORD,
        "phone": "0501234567",
    }
    body.update(overrides)
    return client.post("/auth/register", json=body)


def _login_with_sms_code(client, sender, email="sara@example.com", user_type="USER"):
    sent = client.post("/auth/login/email/send-otp", json={"email": email, "user_type": user_type})
    assert sent.status_code == 200
    verified = client.post(
        "/auth/login/email/verify-otp",
        json={"email": email, "user_type": user_type, "otp": sender.last_sms_otp()},
    )
    assert verified.status_code == 200
    return client.post("/auth/login", json={"email": email, "password": STRONG_PASSWORD, "user_type": user_type})


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_home_endpoint(client):
    response = client.get("/")

    assert response.status_code == 200
    payload = response.json()
    assert payload["message"] == "RABHAN auth service running"
    assert payload["status"] == "success"


def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["data"]["environment"]


def test_register_endpoint(client):
    response = _register(client)

    assert response.status_code == 201
    payload = response.json()
    assert payload["status"] == "success"
    assert payload["status_code"] == 201
    assert payload["data"]["token_type"] == "bearer"
    assert payload["data"]["user"]["phone"] == "+966501234567"


def test_duplicate_registration_is_a_conflict(client):
    _register(client)

    response = _register(client, email="SARA@example.com", phone=None)

    assert response.status_code == 409
    payload = response.json()
    assert payload["status"] == "error"
    assert payload["data"] == {"code": "DUPLICATE_FIELD", "field": "email"}


def test_weak_password_lists_reasons(client):
    response = _register(client, password="short")

    assert response.status_code == 422
    assert response.json()["data"]["reasons"]


def test_email_login_without_sms_code_is_refused(client):
    _register(client)

    response = client.post(
        "/auth/login", json={"email": "sara@example.com", "password": STRONG_PASSWORD, "user_type": "USER"}
    )

    assert response.status_code == 401
    assert response.json()["data"]["code"] == "OTP_VERIFICATION_REQUIRED"


def test_full_session_lifecycle(client, sender):
    _register(client)

    login = _login_with_sms_code(client, sender)
    assert login.status_code == 200
    tokens = login.json()["data"]

    profile = client.get("/auth/profile", headers=_bearer(tokens["access_token"]))
    assert profile.status_code == 200
    assert profile.json()["data"]["email"] == "sara@example.com"

    refreshed = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200
    new_tokens = refreshed.json()["data"]

    # the rotated-out session no longer authenticates
    stale = client.get("/auth/profile", headers=_bearer(tokens["access_token"]))
    assert stale.status_code == 401

    logout = client.post("/auth/logout", headers=_bearer(new_tokens["access_token"]))
    assert logout.status_code == 200
    after = client.get("/auth/profile", headers=_bearer(new_tokens["access_token"]))
    assert after.status_code == 401


def test_profile_requires_a_valid_token(client):
    response = client.get("/auth/profile", headers=_bearer("not-a-token"))

    assert response.status_code == 401


def test_contractor_profile_update(client, sender):
    client.post(
        "/auth/contractor/register",
        json={
            "first_name": "Omar",
            "last_name": "Haddad",
            "email": "omar@solar.example.com",
            "password": STRONG_PASSWORD,
            "phone": "0551234567",
            "company_name": "Sun Co",
        },
    )
    tokens = _login_with_sms_code(client, sender, "omar@solar.example.com", "CONTRACTOR").json()["data"]

    response = client.put(
        "/auth/profile", json={"company_name": "Shams Ltd"}, headers=_bearer(tokens["access_token"])
    )

    assert response.status_code == 200
    assert response.json()["data"]["company_name"] == "Shams Ltd"


def test_password_reset_request_does_not_reveal_accounts(client):
    response = client.post("/auth/password/reset/request", json={"email": "nobody@example.com"})

    assert response.status_code == 200
    assert response.json()["data"] is None


def test_password_strength_endpoint(client):
    response = client.post("/auth/password/strength", json={"password": "abc"})

    assert response.status_code == 200
    assert response.json()["data"]["strength"] == "weak"


def test_phone_validate_endpoint(client):
    response = client.post("/auth/phone/validate", json={"phone_number": "0501234567"})

    assert response.status_code == 200
    assert response.json()["data"] == {
        "is_valid": True,
        "country": "SA",
        "formatted": "+966501234567",
        "country_name": "Saudi Arabia",
    }


def test_phone_countries_endpoint(client):
    response = client.get("/auth/phone/countries")

    assert [country["code"] for country in response.json()["data"]] == ["SA", "IN", "US"]


def test_phone_otp_endpoints(client, sender):
    sent = client.post("/auth/phone/send-otp", json={"phone_number": "0501234567"})
    assert sent.status_code == 200
    assert sent.json()["data"]["phone_number"] == "+966501234567"

    wrong = client.post("/auth/phone/verify-otp", json={"phone_number": "0501234567", "otp": "12345a"})
    assert wrong.status_code == 400
    assert wrong.json()["data"]["code"] == "OTP_INVALID"

    verified = client.post(
        "/auth/phone/verify-otp", json={"phone_number": "0501234567", "otp": sender.last_sms_otp()}
    )
    assert verified.status_code == 200
    assert verified.json()["data"]["verified"] is True


def test_invalid_phone_is_a_bad_request(client):
    response = client.post("/auth/phone/send-otp", json={"phone_number": "12345"})

    assert response.status_code == 400
    assert response.json()["data"]["code"] == "INVALID_PHONE_FORMAT"


def test_phone_send_rate_limit(client):
    for _ in range(5):
        client.post("/auth/phone/send-otp", json={"phone_number": "0501234567"})

    response = client.post("/auth/phone/send-otp", json={"phone_number": "0501234567"})

    assert response.status_code == 429


def test_email_verification_endpoints(client, sender, session_factory):
    registered = _register(client).json()["data"]
    headers = _bearer(registered["access_token"])

    sent = client.post("/auth/email/send-verification", json={"email": "Sara@example.com"}, headers=headers)
    assert sent.status_code == 200
    assert sent.json()["data"] == {"email": "sara@example.com", "delivered": True}

    verified = client.post("/auth/email/verify-token", json={"token": sender.last_verification_token()})
    assert verified.status_code == 200
    assert verified.json()["data"] == {"user_id": registered["user"]["id"], "email": "sara@example.com"}
    with session_factory() as db:
        assert db.get(User, registered["user"]["id"]).email_verified is True

    reused = client.post("/auth/email/verify-token", json={"token": sender.last_verification_token()})
    assert reused.status_code == 400


def test_email_otp_endpoints(client, sender):
    client.post("/auth/email/send-otp", json={"email": "sara@example.com"})

    response = client.post("/auth/email/verify-otp", json={"email": "sara@example.com", "otp": sender.last_email_otp()})

    assert response.status_code == 200
    assert response.json()["data"]["verified"] is True


def test_login_otp_for_unknown_email_does_not_reveal_accounts(client, sender):
    response = client.post("/auth/login/email/send-otp", json={"email": "nobody@example.com", "user_type": "USER"})

    assert response.status_code == 200
    assert response.json()["data"] is None
    assert sender.sms == []


def test_anonymous_email_otp_cannot_verify_another_account(client, sender, session_factory):
    victim_id = _register(client).json()["data"]["user"]["id"]

    client.post("/auth/email/send-otp", json={"email": "attacker@evil.example.com", "user_id": victim_id})
    response = client.post(
        "/auth/email/verify-otp",
        json={"email": "attacker@evil.example.com", "otp": sender.last_email_otp(), "user_id": victim_id},
    )

    assert response.status_code == 200
    with session_factory() as db:
        assert db.get(User, victim_id).email_verified is False


def test_signed_in_email_otp_only_marks_a_matching_address(client, sender, session_factory):
    registered = _register(client).json()["data"]
    headers = _bearer(registered["access_token"])

    client.post("/auth/email/send-otp", json={"email": "other@example.com"}, headers=headers)
    client.post(
        "/auth/email/verify-otp", json={"email": "other@example.com", "otp": sender.last_email_otp()}, headers=headers
    )
    with session_factory() as db:
        assert db.get(User, registered["user"]["id"]).email_verified is False

    client.post("/auth/email/send-otp", json={"email": "sara@example.com"}, headers=headers)
    client.post(
        "/auth/email/verify-otp", json={"email": "sara@example.com", "otp": sender.last_email_otp()}, headers=headers
    )
    with session_factory() as db:
        assert db.get(User, registered["user"]["id"]).email_verified is True


def test_anonymous_phone_otp_only_sets_the_marker(client, sender, session_factory):
    victim_id = _register(client).json()["data"]["user"]["id"]

    client.post("/auth/phone/send-otp", json={"phone_number": "0501234567", "user_id": victim_id})
    response = client.post(
        "/auth/phone/verify-otp",
        json={"phone_number": "0501234567", "otp": sender.last_sms_otp(), "user_id": victim_id},
    )

    assert response.status_code == 200
    with session_factory() as db:
        assert db.get(User, victim_id).phone_verified is False


def test_signed_in_phone_otp_marks_the_callers_number(client, sender, session_factory):
    registered = _register(client).json()["data"]
    headers = _bearer(registered["access_token"])

    client.post("/auth/phone/send-otp", json={"phone_number": "0501234567"})
    response = client.post(
        "/auth/phone/verify-otp", json={"phone_number": "0501234567", "otp": sender.last_sms_otp()}, headers=headers
    )

    assert response.status_code == 200
    with session_factory() as db:
        assert db.get(User, registered["user"]["id"]).phone_verified is True


def test_verification_with_a_bad_token_is_refused(client):
    response = client.post(
        "/auth/email/verify-otp", json={"email": "sara@example.com", "otp": "123456"}, headers=_bearer("not-a-token")
    )

    assert response.status_code == 401


def test_invalid_access_token_is_audited(client, caplog):
    with caplog.at_level(logging.WARNING, logger="rabhan_auth.audit"):
        response = client.get("/auth/profile", headers=_bearer("not-a-token"))

    assert response.status_code == 401
    assert "ACCESS_TOKEN_INVALID" in [getattr(record, "event_type", None) for record in caplog.records]
