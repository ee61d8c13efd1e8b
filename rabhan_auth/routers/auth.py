from fastapi import APIRouter, Depends, Request, status

from rabhan_auth.dependencies import get_auth_service
from rabhan_auth.schemas.auth import (
    ChangePasswordRequest,
    ContractorRegisterRequest,
    EmailLookupRequest,
    LoginOtpVerify,
    LoginRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    PasswordStrengthRequest,
    ProfileUpdate,
    RefreshTokenRequest,
    RegisterRequest,
)
from rabhan_auth.services.auth_middleware import get_current_session
from rabhan_auth.services.auth_service import AuthService
from rabhan_auth.utils.response import create_response, handle_exception

router = APIRouter(prefix="/auth", tags=["Auth"])

RESET_REQUESTED_MESSAGE = "If the email exists, a password reset link has been sent"
UNKNOWN_LOGIN_EMAIL_MESSAGE = "If the email is registered, an OTP will be sent to the associated phone number"


def _client(request: Request) -> dict:
    return {
        "user_agent": request.headers.get("user-agent"),
        "ip_address": request.client.host if request.client else None,
    }


@router.post("/register")
def register_user(body: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        tokens = auth.register_user(body)
        return create_response("User registered successfully", tokens, status.HTTP_201_CREATED)
    except Exception as exc:
        return handle_exception(exc)


@router.post("/contractor/register")
def register_contractor(body: ContractorRegisterRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        tokens = auth.register_contractor(body)
        return create_response("Contractor registered successfully", tokens, status.HTTP_201_CREATED)
    except Exception as exc:
        return handle_exception(exc)


@router.post("/login")
def login(body: LoginRequest, request: Request, auth: AuthService = Depends(get_auth_service)):
    try:
        tokens = auth.login(body, **_client(request))
        return create_response("Login successful", tokens)
    except Exception as exc:
        return handle_exception(exc)


@router.post("/login/email/lookup")
def lookup_login_email(body: EmailLookupRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        found = auth.lookup_email_for_login(body.email, body.user_type)
        if found is None:
            return create_response(UNKNOWN_LOGIN_EMAIL_MESSAGE)
        return create_response("Account found. OTP will be sent to the registered phone number", found)
    except Exception as exc:
        return handle_exception(exc)


@router.post("/login/email/send-otp")
def send_login_otp(body: EmailLookupRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        sent = auth.send_login_otp(body.email, body.user_type)
        if sent is None:
            return create_response(UNKNOWN_LOGIN_EMAIL_MESSAGE)
        return create_response("OTP sent to the registered phone number", sent)
    except Exception as exc:
        return handle_exception(exc)


@router.post("/login/email/verify-otp")
def verify_login_otp(body: LoginOtpVerify, auth: AuthService = Depends(get_auth_service)):
    try:
        auth.verify_login_otp(body.email, body.otp, body.user_type)
        return create_response("OTP verified. You can now sign in", {"email": body.email.lower(), "verified": True})
    except Exception as exc:
        return handle_exception(exc)


@router.post("/refresh")
def refresh(body: RefreshTokenRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        tokens = auth.refresh_token(body.refresh_token)
        return create_response("Token refreshed", tokens)
    except Exception as exc:
        return handle_exception(exc)


@router.post("/logout")
def logout(context: dict = Depends(get_current_session), auth: AuthService = Depends(get_auth_service)):
    try:
        auth.logout(context["identity_id"], context["session_id"], context["role"])
        return create_response("Logged out successfully", {"session_id": context["session_id"]})
    except Exception as exc:
        return handle_exception(exc)


@router.get("/profile")
def get_profile(context: dict = Depends(get_current_session), auth: AuthService = Depends(get_auth_service)):
    try:
        profile = auth.get_profile(context["identity_id"], context["role"])
        return create_response("Profile fetched", profile)
    except Exception as exc:
        return handle_exception(exc)


@router.put("/profile")
def update_profile(
    body: ProfileUpdate,
    context: dict = Depends(get_current_session),
    auth: AuthService = Depends(get_auth_service),
):
    try:
        profile = auth.update_profile(context["identity_id"], context["role"], body)
        return create_response("Profile updated", profile)
    except Exception as exc:
        return handle_exception(exc)


@router.post("/password/change")
def change_password(
    body: ChangePasswordRequest,
    context: dict = Depends(get_current_session),
    auth: AuthService = Depends(get_auth_service),
):
    try:
        auth.change_password(context["identity_id"], body.old_password, body.new_password, context["role"])
        return create_response("Password changed successfully")
    except Exception as exc:
        return handle_exception(exc)


@router.post("/password/strength")
def password_strength(body: PasswordStrengthRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        return create_response("Password strength evaluated", auth.check_password_strength(body.password))
    except Exception as exc:
        return handle_exception(exc)


@router.post("/password/reset/request")
def request_password_reset(body: PasswordResetRequest, auth: AuthService = Depends(get_auth_service)):
    try:
        auth.request_password_reset(body.email)
        # Same answer whether or not the account exists
        return create_response(RESET_REQUESTED_MESSAGE)
    except Exception as exc:
        return handle_exception(exc)


@router.post("/password/reset/confirm")
def confirm_password_reset(body: PasswordResetConfirm, auth: AuthService = Depends(get_auth_service)):
    try:
        auth.reset_password(body.token, body.new_password)
        return create_response("Password has been reset")
    except Exception as exc:
        return handle_exception(exc)
