"""Phone number normalisation and SMS one-time passcodes."""
from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from rabhan_auth.config import Settings
from rabhan_auth.models.identity import UserType
from rabhan_auth.services.audit_log import Severity, log_auth_event, log_security_event
from rabhan_auth.services.ephemeral_store import EphemeralStore
from rabhan_auth.services.errors import (
    InvalidPhoneFormat,
    NotificationError,
    OTPExpiredOrNotFound,
    OTPInvalid,
    RateLimitExceeded,
    StoreUnavailable,
)
from rabhan_auth.services.event_notifier import PHONE_VERIFIED, EventNotifier
from rabhan_auth.services.notification_service import SmsSender
from rabhan_auth.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

OTP_TTL_SECONDS = 5 * 60
VERIFIED_PHONE_TTL_SECONDS = 24 * 60 * 60

_NON_DIAL_CHARS = re.compile(r"[^\d+]")


@dataclass(frozen=True)
class CountryPattern:
    code: str
    dial_code: str
    name: str
    example: str
    international: re.Pattern
    local: re.Pattern
    # (local pattern, prefix to strip) pairs tried in order when formatting
    local_rules: tuple


# Order matters for auto-detection: the first matching country wins.
PHONE_PATTERNS: Dict[str, CountryPattern] = {
    "SA": CountryPattern(
        code="SA",
        dial_code="+966",
        name="Saudi Arabia",
        example="+966501234567",
        international=re.compile(r"^\+9665[0-9]{8}$"),
        local=re.compile(r"^05[0-9]{8}$"),
        local_rules=(
            (re.compile(r"^05[0-9]{8}$"), "0"),
            (re.compile(r"^966[0-9]+$"), "966"),
            (re.compile(r"^5[0-9]{8}$"), ""),
        ),
    ),
    "IN": CountryPattern(
        code="IN",
        dial_code="+91",
        name="India",
        example="+919182614577",
        international=re.compile(r"^\+91[6-9][0-9]{9}$"),
        local=re.compile(r"^[6-9][0-9]{9}$"),
        local_rules=(
            (re.compile(r"^91[0-9]{10}$"), "91"),
            (re.compile(r"^[6-9][0-9]{9}$"), ""),
        ),
    ),
    "US": CountryPattern(
        code="US",
        dial_code="+1",
        name="United States",
        example="+19182614577",
        international=re.compile(r"^\+1[2-9][0-9]{9}$"),
        local=re.compile(r"^[2-9][0-9]{9}$"),
        local_rules=(
            (re.compile(r"^1[0-9]+$"), "1"),
            (re.compile(r"^[2-9][0-9]{9}$"), ""),
        ),
    ),
}


@dataclass
class PhoneValidation:
    is_valid: bool
    country: Optional[str]
    formatted: str

    @property
    def country_name(self) -> Optional[str]:
        pattern = PHONE_PATTERNS.get(self.country or "")
        return pattern.name if pattern else None

    def as_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "country": self.country,
            "formatted": self.formatted,
            "country_name": self.country_name,
        }


@dataclass
class OtpDispatch:
    phone: str
    country: str
    delivered: bool


def clean_phone(phone_number: str) -> str:
    return _NON_DIAL_CHARS.sub("", phone_number or "")


def format_phone(phone_number: str, country_code: str) -> str:
    cleaned = clean_phone(phone_number)
    pattern = PHONE_PATTERNS.get(country_code)
    if not pattern or cleaned.startswith(pattern.dial_code):
        return cleaned
    for local_pattern, strip in pattern.local_rules:
        if local_pattern.match(cleaned):
            return pattern.dial_code + cleaned[len(strip):]
    return cleaned


def detect_country(phone_number: str) -> Optional[str]:
    cleaned = clean_phone(phone_number)
    for code, pattern in PHONE_PATTERNS.items():
        if cleaned.startswith(pattern.dial_code) or pattern.local.match(cleaned):
            return code
    return None


def validate_phone(phone_number: str, country_code: str | None = None) -> PhoneValidation:
    """Normalise ``phone_number`` to E.164 and check it against a country pattern.

    With ``country_code`` the number is checked strictly against that
    country; otherwise the first supported country whose international or
    local form matches is used.
    """
    cleaned = clean_phone(phone_number)
    country = country_code.upper() if country_code else None
    if country and country in PHONE_PATTERNS:
        formatted = format_phone(cleaned, country)
        return PhoneValidation(bool(PHONE_PATTERNS[country].international.match(formatted)), country, formatted)

    detected = detect_country(cleaned)
    if detected:
        formatted = format_phone(cleaned, detected)
        return PhoneValidation(bool(PHONE_PATTERNS[detected].international.match(formatted)), detected, formatted)

    return PhoneValidation(False, None, cleaned)


def supported_countries() -> List[dict]:
    return [
        {"code": code, "name": pattern.name, "example": pattern.example, "country_code": pattern.dial_code}
        for code, pattern in PHONE_PATTERNS.items()
    ]


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def sms_message(otp: str, country_code: str) -> str:
    message = f"RABHAN OTP: {otp}. Expires in 5 min. Do not share."
    if country_code == "SA":
        # Short Arabic line keeps the SMS in a single segment
        return f"{message} رمز رابحان: {otp}"
    return message


class PhoneVerificationService:
    def __init__(
        self,
        store: EphemeralStore,
        sms_sender: SmsSender,
        settings: Settings,
        events: EventNotifier | None = None,
        directory=None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.sms_sender = sms_sender
        self.settings = settings
        self.events = events
        self.directory = directory
        self._clock = clock
        self.rate_limiter = RateLimiter(
            store, "otp", limit=settings.OTP_RATE_LIMIT, window_seconds=settings.OTP_RATE_WINDOW_SECONDS
        )

    def validate(self, phone_number: str, country_code: str | None = None) -> PhoneValidation:
        return validate_phone(phone_number, country_code)

    def _require_valid(self, phone_number: str, country_code: str | None) -> PhoneValidation:
        validation = self.validate(phone_number, country_code)
        if not validation.is_valid or not validation.country:
            examples = ", ".join(f"{p.name} ({p.example})" for p in PHONE_PATTERNS.values())
            raise InvalidPhoneFormat(f"Invalid phone number format. Supported countries: {examples}")
        return validation

    def send_otp(self, phone_number: str, user_id: str | None = None, country_code: str | None = None) -> OtpDispatch:
        validation = self._require_valid(phone_number, country_code)
        phone = validation.formatted

        try:
            attempts = self.rate_limiter.check(phone, "Too many OTP requests. Please try again later.")
        except RateLimitExceeded:
            log_security_event(
                "OTP_RATE_LIMIT_EXCEEDED",
                Severity.HIGH,
                phone_number=phone,
                user_id=user_id,
                attempts=self.rate_limiter.attempts(phone),
            )
            raise

        dummy = self.settings.dummy_otp_enabled
        otp = self.settings.DUMMY_OTP if dummy else generate_otp()
        self.store.set_with_ttl(f"phone_otp:{phone}", otp, OTP_TTL_SECONDS)
        self.rate_limiter.increment(phone)

        delivered = False
        if dummy:
            logger.info("Dummy OTP mode: SMS to %s skipped", phone)
        else:
            try:
                self.sms_sender.send_sms(phone, sms_message(otp, validation.country))
                delivered = True
            except NotificationError as exc:
                logger.error("Send OTP to %s failed: %s", phone, exc)
                log_security_event(
                    "PHONE_OTP_SEND_FAILED", Severity.HIGH, phone_number=phone, user_id=user_id, error=str(exc)
                )

        log_auth_event(
            "PHONE_OTP_SENT_DUMMY" if dummy else "PHONE_OTP_SENT",
            user_id,
            phone_number=phone,
            country=validation.country,
            country_name=validation.country_name,
            attempts=attempts + 1,
            delivered=delivered,
        )
        return OtpDispatch(phone=phone, country=validation.country, delivered=delivered)

    def resend_otp(self, phone_number: str, user_id: str | None = None, country_code: str | None = None) -> OtpDispatch:
        validation = self._require_valid(phone_number, country_code)
        log_auth_event("PHONE_OTP_RESEND", user_id, phone_number=validation.formatted, country=validation.country)
        return self.send_otp(phone_number, user_id, country_code)

    def verify_otp(
        self,
        phone_number: str,
        otp: str,
        user_id: str | None = None,
        country_code: str | None = None,
        user_type: UserType = UserType.USER,
    ) -> bool:
        validation = self._require_valid(phone_number, country_code)
        phone = validation.formatted
        otp_key = f"phone_otp:{phone}"

        stored = self.store.get(otp_key)
        if stored is None:
            log_security_event(
                "PHONE_OTP_EXPIRED", Severity.LOW, phone_number=phone, country=validation.country, user_id=user_id
            )
            raise OTPExpiredOrNotFound()
        if not secrets.compare_digest(stored.encode("utf-8"), (otp or "").strip().encode("utf-8")):
            log_security_event(
                "PHONE_OTP_INVALID", Severity.MEDIUM, phone_number=phone, country=validation.country, user_id=user_id
            )
            raise OTPInvalid()

        self.store.delete(otp_key)
        self.rate_limiter.clear(phone)
        self.store.set_with_ttl(f"verified_phone:{phone}", "true", VERIFIED_PHONE_TTL_SECONDS)

        marked = False
        if user_id and self.directory is not None:
            marked = self.directory.mark_phone_verified(user_id, user_type, phone)
            if not marked:
                log_security_event(
                    "PHONE_VERIFICATION_IDENTITY_MISMATCH",
                    Severity.MEDIUM,
                    phone_number=phone,
                    user_id=user_id,
                    user_type=user_type.value,
                )

        log_auth_event(
            "PHONE_VERIFICATION_SUCCESS",
            user_id,
            phone_number=phone,
            country=validation.country,
            country_name=validation.country_name,
        )
        if self.events is not None:
            self.events.emit(
                PHONE_VERIFIED,
                {
                    "phone": phone,
                    "identity_id": user_id if marked else None,
                    "user_type": user_type.value,
                    "verified_at": self._clock(),
                },
            )
        logger.info("Phone verification successful for %s (%s)", phone, validation.country_name)
        return True

    def is_phone_verified(self, phone_number: str) -> bool:
        validation = self.validate(phone_number)
        if not validation.is_valid:
            return False
        try:
            return self.store.get(f"verified_phone:{validation.formatted}") == "true"
        except StoreUnavailable:
            # Fail closed: an unreachable store never vouches for a phone.
            logger.warning("Verified-phone lookup unavailable for %s; treating as unverified", validation.formatted)
            return False

    def supported_countries(self) -> List[dict]:
        return supported_countries()
