"""Builds the service graph once per process.

Every service receives its collaborators here, so tests build the same graph
around an in-memory store, recording senders and a throwaway database.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import sessionmaker

from rabhan_auth.config import Settings
from rabhan_auth.services.audit_log import log_auth_event
from rabhan_auth.services.auth_service import AuthService
from rabhan_auth.services.email_verification_service import EmailVerificationService
from rabhan_auth.services.ephemeral_store import EphemeralStore, build_store
from rabhan_auth.services.event_notifier import EMAIL_VERIFIED, PHONE_VERIFIED, EventNotifier
from rabhan_auth.services.identity_directory import IdentityDirectory
from rabhan_auth.services.notification_service import (
    EmailSender,
    LoggingNotificationSender,
    SendGridEmailSender,
    SmsSender,
    TwilioSmsSender,
)
from rabhan_auth.services.password_service import PasswordHasher
from rabhan_auth.services.phone_verification_service import PhoneVerificationService
from rabhan_auth.services.token_service import TokenService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    session_factory: sessionmaker
    store: EphemeralStore
    events: EventNotifier
    directory: IdentityDirectory
    phone_verification: PhoneVerificationService
    email_verification: EmailVerificationService
    token_service: TokenService
    hasher: PasswordHasher
    auth_service: AuthService


def default_sms_sender(settings: Settings) -> SmsSender:
    if settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN and settings.TWILIO_PHONE_NUMBER:
        return TwilioSmsSender(
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_PHONE_NUMBER,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    logger.warning("Twilio credentials missing; SMS will only be logged")
    return LoggingNotificationSender()


def default_email_sender(settings: Settings) -> EmailSender:
    if settings.SENDGRID_API_KEY:
        return SendGridEmailSender(
            settings.SENDGRID_API_KEY,
            settings.SENDGRID_FROM_EMAIL,
            settings.SENDGRID_FROM_NAME,
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    logger.warning("SendGrid API key missing; email will only be logged")
    return LoggingNotificationSender()


def _audit_verification(event_type: str):
    def handler(payload: dict) -> None:
        log_auth_event(
            event_type,
            payload.get("identity_id"),
            user_type=payload.get("user_type"),
            phone=payload.get("phone"),
            email=payload.get("email"),
        )

    return handler


def build_container(
    settings: Settings,
    session_factory: sessionmaker | None = None,
    store: EphemeralStore | None = None,
    sms_sender: SmsSender | None = None,
    email_sender: EmailSender | None = None,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> ServiceContainer:
    if session_factory is None:
        from rabhan_auth.database import SessionLocal

        session_factory = SessionLocal
    if store is None:
        store = build_store(settings.EPHEMERAL_STORE_URL, settings.EPHEMERAL_STORE_PREFIX, clock)

    events = EventNotifier()
    events.on(PHONE_VERIFIED, _audit_verification("PHONE_VERIFIED_EVENT"))
    events.on(EMAIL_VERIFIED, _audit_verification("EMAIL_VERIFIED_EVENT"))

    directory = IdentityDirectory(session_factory, clock=clock)
    phone_verification = PhoneVerificationService(
        store, sms_sender or default_sms_sender(settings), settings, events=events, directory=directory, clock=clock
    )
    email_verification = EmailVerificationService(
        store, email_sender or default_email_sender(settings), settings, events=events, directory=directory, clock=clock
    )
    token_service = TokenService(
        settings.JWT_SECRET,
        settings.JWT_REFRESH_SECRET or settings.JWT_SECRET,
        algorithm=settings.ALGORITHM,
        issuer=settings.JWT_ISSUER,
        audience=settings.JWT_AUDIENCE,
        access_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
        refresh_days=settings.REFRESH_TOKEN_EXPIRE_DAYS,
        clock=clock,
    )
    hasher = PasswordHasher(settings.BCRYPT_ROUNDS)
    auth_service = AuthService(
        session_factory,
        store,
        directory,
        phone_verification,
        token_service,
        hasher,
        settings,
        clock=clock,
    )
    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        store=store,
        events=events,
        directory=directory,
        phone_verification=phone_verification,
        email_verification=email_verification,
        token_service=token_service,
        hasher=hasher,
        auth_service=auth_service,
    )
