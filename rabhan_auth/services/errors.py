"""Typed failures raised by the authentication and verification services."""
from __future__ import annotations

from typing import Any, Dict, Iterable

from fastapi import status


class AuthError(Exception):
    """Base class carrying a user-safe message, a machine code and an HTTP status."""

    code = "AUTH_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Authentication request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_data(self) -> Dict[str, Any]:
        return {"code": self.code}


class InvalidPhoneFormat(AuthError):
    code = "INVALID_PHONE_FORMAT"
    default_message = "Invalid phone number format"


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials"


class AccountLocked(AuthError):
    code = "ACCOUNT_LOCKED"
    status_code = status.HTTP_423_LOCKED
    default_message = "Account temporarily locked. Please try again later."


class AccountNotActive(AuthError):
    code = "ACCOUNT_NOT_ACTIVE"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Account is not active"


class RateLimitExceeded(AuthError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Please try again later."


class OTPExpiredOrNotFound(AuthError):
    code = "OTP_EXPIRED_OR_NOT_FOUND"
    default_message = "OTP expired or not found"


class OTPInvalid(AuthError):
    code = "OTP_INVALID"
    default_message = "Invalid OTP"


class TokenExpiredOrNotFound(AuthError):
    code = "TOKEN_EXPIRED_OR_NOT_FOUND"
    default_message = "Verification token expired or not found"


class InvalidOrExpiredToken(AuthError):
    code = "INVALID_OR_EXPIRED_TOKEN"
    default_message = "Invalid or expired reset token"


class DuplicateField(AuthError):
    code = "DUPLICATE_FIELD"
    status_code = status.HTTP_409_CONFLICT

    _LABELS = {
        "email": "Email already registered",
        "phone": "Phone number already registered",
        "national_id": "National ID already registered",
    }

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(self._LABELS.get(field, f"{field} already registered"))

    def to_data(self) -> Dict[str, Any]:
        return {"code": self.code, "field": self.field}


class PhoneVerificationRequired(AuthError):
    code = "PHONE_VERIFICATION_REQUIRED"
    default_message = "Phone verification required before registration"


class OTPVerificationRequired(AuthError):
    code = "OTP_VERIFICATION_REQUIRED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "OTP verification required before login"


class InvalidToken(AuthError):
    code = "INVALID_TOKEN"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or expired token"


class InvalidRefreshToken(AuthError):
    code = "INVALID_REFRESH_TOKEN"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid refresh token"


class WeakPassword(AuthError):
    code = "WEAK_PASSWORD"
    status_code = 422

    def __init__(self, reasons: Iterable[str]) -> None:
        self.reasons = list(reasons)
        super().__init__(", ".join(self.reasons) or "Password does not meet the policy")

    def to_data(self) -> Dict[str, Any]:
        return {"code": self.code, "reasons": self.reasons}


class InvalidOldPassword(AuthError):
    code = "INVALID_OLD_PASSWORD"
    default_message = "Invalid old password"


class IdentityNotFound(AuthError):
    code = "IDENTITY_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Account not found"


class StoreUnavailable(AuthError):
    code = "STORE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Verification store is unavailable"


class NotificationError(Exception):
    """Raised by notification senders when a message cannot be delivered."""
