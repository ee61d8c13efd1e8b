"""Email ownership checks via single-use links and one-time codes.

Re-sending overwrites the artifact at the same key, so only the newest OTP
for an address is accepted. A link token stays valid until it expires or is
used; tokens are random so older links are never confused with new ones.
"""
from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime
from typing import Callable, Dict

from rabhan_auth.config import Settings
from rabhan_auth.models.identity import UserType
from rabhan_auth.services.audit_log import Severity, log_auth_event, log_security_event, mask_token
from rabhan_auth.services.ephemeral_store import EphemeralStore
from rabhan_auth.services.errors import (
    NotificationError,
    OTPExpiredOrNotFound,
    OTPInvalid,
    RateLimitExceeded,
    TokenExpiredOrNotFound,
)
from rabhan_auth.services.event_notifier import EMAIL_VERIFIED, EventNotifier
from rabhan_auth.services.notification_service import EmailSender
from rabhan_auth.services.phone_verification_service import generate_otp
from rabhan_auth.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

TOKEN_TTL_SECONDS = 24 * 60 * 60
OTP_TTL_SECONDS = 15 * 60

VERIFICATION_SUBJECT = "Verify Your RABHAN Account"
OTP_SUBJECT = "Your RABHAN Verification Code"


def verification_email_html(verification_url: str, display_name: str | None = None) -> str:
    return f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <h1 style="background: #3eb2b1; color: white; padding: 20px; text-align: center;">RABHAN</h1>
  <h2>Verify Your Email Address</h2>
  <p>Hello {display_name or "User"},</p>
  <p>Thank you for registering with RABHAN. Please click the link below to verify your email address.</p>
  <p style="text-align: center;"><a href="{verification_url}">Verify Email Address</a></p>
  <p style="word-break: break-all; color: #666;">{verification_url}</p>
  <p>This link will expire in 24 hours for security reasons.</p>
  <p>If you didn't request this verification, please ignore this email.</p>
</body>
</html>"""


def otp_email_html(otp: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <h1 style="background: #3eb2b1; color: white; padding: 20px; text-align: center;">RABHAN</h1>
  <h2>Your Verification Code</h2>
  <p>Use this code to verify your email address:</p>
  <p style="font-size: 32px; font-weight: bold; letter-spacing: 5px; text-align: center;">{otp}</p>
  <p>This code will expire in 15 minutes for security reasons.</p>
</body>
</html>"""


class EmailVerificationService:
    def __init__(
        self,
        store: EphemeralStore,
        email_sender: EmailSender,
        settings: Settings,
        events: EventNotifier | None = None,
        directory=None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.email_sender = email_sender
        self.settings = settings
        self.events = events
        self.directory = directory
        self._clock = clock
        self.rate_limiter = RateLimiter(
            store, "email_verify", limit=settings.OTP_RATE_LIMIT, window_seconds=settings.OTP_RATE_WINDOW_SECONDS
        )

    def _check_rate_limit(self, email: str, user_id: str | None, event_type: str) -> int:
        try:
            return self.rate_limiter.check(email, "Too many email verification requests. Please try again later.")
        except RateLimitExceeded:
            log_security_event(
                event_type, Severity.MEDIUM, email=email, user_id=user_id, attempts=self.rate_limiter.attempts(email)
            )
            raise

    def verification_url(self, token: str) -> str:
        return f"{self.settings.FRONTEND_URL.rstrip('/')}/verify-email?token={token}"

    def send_verification_email(
        self, email: str, user_id: str | None, display_name: str | None = None, user_type: UserType = UserType.USER
    ) -> bool:
        email = email.lower()
        attempts = self._check_rate_limit(email, user_id, "EMAIL_VERIFICATION_RATE_LIMIT_EXCEEDED")

        token = secrets.token_hex(32)
        record = {
            "userId": user_id,
            "email": email,
            "userType": UserType(user_type).value,
            "createdAt": self._clock().isoformat(),
        }
        self.store.set_with_ttl(f"email_verification:{token}", json.dumps(record), TOKEN_TTL_SECONDS)
        self.rate_limiter.increment(email)

        url = self.verification_url(token)
        template_id = self.settings.SENDGRID_EMAIL_VERIFICATION_TEMPLATE_ID
        try:
            if template_id:
                self.email_sender.send_template_email(
                    email,
                    template_id,
                    {"user_name": display_name or "User", "verification_url": url, "company_name": "RABHAN"},
                )
            else:
                self.email_sender.send_email(email, VERIFICATION_SUBJECT, verification_email_html(url, display_name))
            delivered = True
        except NotificationError as exc:
            delivered = False
            logger.error("Send verification email to %s failed: %s", email, exc)
            log_security_event(
                "EMAIL_VERIFICATION_SEND_FAILED", Severity.HIGH, email=email, user_id=user_id, error=str(exc)
            )

        log_auth_event("EMAIL_VERIFICATION_SENT", user_id, email=email, attempts=attempts + 1, delivered=delivered)
        return delivered

    def send_otp_email(self, email: str, user_id: str | None = None) -> bool:
        email = email.lower()
        attempts = self._check_rate_limit(email, user_id, "EMAIL_OTP_RATE_LIMIT_EXCEEDED")

        otp = generate_otp()
        self.store.set_with_ttl(f"email_otp:{email}", otp, OTP_TTL_SECONDS)
        self.rate_limiter.increment(email)

        try:
            self.email_sender.send_email(email, OTP_SUBJECT, otp_email_html(otp))
            delivered = True
        except NotificationError as exc:
            delivered = False
            logger.error("Send email OTP to %s failed: %s", email, exc)
            log_security_event("EMAIL_OTP_SEND_FAILED", Severity.HIGH, email=email, user_id=user_id, error=str(exc))

        log_auth_event("EMAIL_OTP_SENT", user_id, email=email, attempts=attempts + 1, delivered=delivered)
        return delivered

    def verify_token(self, token: str) -> Dict[str, str]:
        token_key = f"email_verification:{token}"
        raw = self.store.get(token_key)
        if raw is None:
            log_security_event("EMAIL_VERIFICATION_TOKEN_EXPIRED", Severity.LOW, token=mask_token(token))
            raise TokenExpiredOrNotFound()

        record = json.loads(raw)
        user_id, email = record["userId"], record["email"]
        user_type = UserType(record.get("userType", UserType.USER.value))

        self.store.delete(token_key)
        self.rate_limiter.clear(email)
        self._mark_verified(user_id, email, user_type)

        log_auth_event("EMAIL_VERIFICATION_SUCCESS", user_id, email=email)
        logger.info("Email verification successful for %s", email)
        return {"user_id": user_id, "email": email}

    def verify_otp(self, email: str, otp: str, user_id: str | None = None, user_type: UserType = UserType.USER) -> bool:
        email = email.lower()
        otp_key = f"email_otp:{email}"
        stored = self.store.get(otp_key)
        if stored is None:
            log_security_event("EMAIL_OTP_EXPIRED", Severity.LOW, email=email, user_id=user_id)
            raise OTPExpiredOrNotFound()
        if not secrets.compare_digest(stored.encode("utf-8"), (otp or "").strip().encode("utf-8")):
            log_security_event("EMAIL_OTP_INVALID", Severity.MEDIUM, email=email, user_id=user_id)
            raise OTPInvalid()

        self.store.delete(otp_key)
        self.rate_limiter.clear(email)
        self._mark_verified(user_id, email, user_type)

        log_auth_event("EMAIL_OTP_VERIFICATION_SUCCESS", user_id, email=email)
        return True

    def _mark_verified(self, user_id: str | None, email: str, user_type: UserType) -> None:
        marked = False
        if user_id and self.directory is not None:
            marked = self.directory.mark_email_verified(user_id, user_type, email)
            if not marked:
                log_security_event(
                    "EMAIL_VERIFICATION_IDENTITY_MISMATCH",
                    Severity.MEDIUM,
                    email=email,
                    user_id=user_id,
                    user_type=user_type.value,
                )
        if self.events is not None:
            self.events.emit(
                EMAIL_VERIFIED,
                {
                    "email": email,
                    "identity_id": user_id if marked else None,
                    "user_type": user_type.value,
                    "verified_at": self._clock(),
                },
            )
