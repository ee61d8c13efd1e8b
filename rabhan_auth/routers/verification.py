from fastapi import APIRouter, Depends

from rabhan_auth.dependencies import get_email_verification, get_phone_verification
from rabhan_auth.models.identity import UserType
from rabhan_auth.schemas.verification import (
    EmailOtpRequest,
    EmailOtpVerify,
    EmailTokenVerify,
    EmailVerificationRequest,
    PhoneOtpRequest,
    PhoneOtpVerify,
    PhoneValidateRequest,
)
from rabhan_auth.services.auth_middleware import get_optional_session
from rabhan_auth.services.email_verification_service import EmailVerificationService
from rabhan_auth.services.phone_verification_service import PhoneVerificationService
from rabhan_auth.utils.response import create_response, handle_exception

router = APIRouter(prefix="/auth", tags=["Verification"])


def _caller(context: dict | None):
    """Identity id and role of the bearer, or ``(None, USER)`` for anonymous requests."""
    if context is None:
        return None, UserType.USER
    return context["identity_id"], context["role"]


@router.post("/phone/send-otp")
def send_phone_otp(body: PhoneOtpRequest, phone: PhoneVerificationService = Depends(get_phone_verification)):
    try:
        dispatch = phone.send_otp(body.phone_number, None, body.country_code)
        return create_response("OTP sent successfully", {"phone_number": dispatch.phone, "country": dispatch.country})
    except Exception as exc:
        return handle_exception(exc)


@router.post("/phone/resend-otp")
def resend_phone_otp(body: PhoneOtpRequest, phone: PhoneVerificationService = Depends(get_phone_verification)):
    try:
        dispatch = phone.resend_otp(body.phone_number, None, body.country_code)
        return create_response("OTP resent successfully", {"phone_number": dispatch.phone, "country": dispatch.country})
    except Exception as exc:
        return handle_exception(exc)


@router.post("/phone/verify-otp")
def verify_phone_otp(
    body: PhoneOtpVerify,
    context: dict | None = Depends(get_optional_session),
    phone: PhoneVerificationService = Depends(get_phone_verification),
):
    try:
        # Anonymous callers only get the verified-phone marker
        user_id, user_type = _caller(context)
        validation = phone.validate(body.phone_number, body.country_code)
        phone.verify_otp(body.phone_number, body.otp, user_id, body.country_code, user_type)
        return create_response("Phone number verified", {"phone_number": validation.formatted, "verified": True})
    except Exception as exc:
        return handle_exception(exc)


@router.post("/phone/validate")
def validate_phone(body: PhoneValidateRequest, phone: PhoneVerificationService = Depends(get_phone_verification)):
    try:
        return create_response("Phone number checked", phone.validate(body.phone_number, body.country_code).as_dict())
    except Exception as exc:
        return handle_exception(exc)


@router.get("/phone/countries")
def list_countries(phone: PhoneVerificationService = Depends(get_phone_verification)):
    try:
        return create_response("Supported countries", phone.supported_countries())
    except Exception as exc:
        return handle_exception(exc)


@router.post("/email/send-verification")
def send_verification_email(
    body: EmailVerificationRequest,
    context: dict | None = Depends(get_optional_session),
    email: EmailVerificationService = Depends(get_email_verification),
):
    try:
        user_id, user_type = _caller(context)
        delivered = email.send_verification_email(body.email, user_id, body.display_name, user_type)
        return create_response("Verification email sent", {"email": body.email.lower(), "delivered": delivered})
    except Exception as exc:
        return handle_exception(exc)


@router.post("/email/verify-token")
def verify_email_token(body: EmailTokenVerify, email: EmailVerificationService = Depends(get_email_verification)):
    try:
        return create_response("Email verified", email.verify_token(body.token))
    except Exception as exc:
        return handle_exception(exc)


@router.post("/email/send-otp")
def send_email_otp(
    body: EmailOtpRequest,
    context: dict | None = Depends(get_optional_session),
    email: EmailVerificationService = Depends(get_email_verification),
):
    try:
        user_id, _ = _caller(context)
        delivered = email.send_otp_email(body.email, user_id)
        return create_response("Verification code sent", {"email": body.email.lower(), "delivered": delivered})
    except Exception as exc:
        return handle_exception(exc)


@router.post("/email/verify-otp")
def verify_email_otp(
    body: EmailOtpVerify,
    context: dict | None = Depends(get_optional_session),
    email: EmailVerificationService = Depends(get_email_verification),
):
    try:
        user_id, user_type = _caller(context)
        email.verify_otp(body.email, body.otp, user_id, user_type)
        return create_response("Email verified", {"email": body.email.lower(), "verified": True})
    except Exception as exc:
        return handle_exception(exc)
