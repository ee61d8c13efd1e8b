"""Registration, login, session rotation and password lifecycle.

Every write that must be atomic runs inside one ``sessionmaker.begin()``
block: the connection is borrowed for the whole block, committed on success
and rolled back and released on any exception. Audit events and
cache maintenance happen after the commit.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from rabhan_auth.config import Settings
from rabhan_auth.models.contractor import Contractor
from rabhan_auth.models.identity import LOGIN_ALLOWED_STATUSES, IdentityStatus, UserType
from rabhan_auth.models.password_reset_token import PasswordResetToken
from rabhan_auth.schemas.auth import (
    AuthTokens,
    ContractorRegisterRequest,
    IdentityView,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
)
from rabhan_auth.services.audit_log import Severity, log_auth_event, log_security_event, mask_token
from rabhan_auth.services.ephemeral_store import EphemeralStore
from rabhan_auth.services.errors import (
    AccountLocked,
    AccountNotActive,
    DuplicateField,
    IdentityNotFound,
    InvalidCredentials,
    InvalidOldPassword,
    InvalidOrExpiredToken,
    InvalidPhoneFormat,
    InvalidRefreshToken,
    InvalidToken,
    OTPExpiredOrNotFound,
    OTPVerificationRequired,
    PhoneVerificationRequired,
    StoreUnavailable,
)
from rabhan_auth.services.identity_directory import IdentityDirectory
from rabhan_auth.services.identity_repository import IdentityRepository, duplicate_field_from_error
from rabhan_auth.services.password_service import (
    PasswordHasher,
    check_password_strength,
    generate_secure_token,
    validate_password,
)
from rabhan_auth.services.phone_verification_service import PhoneVerificationService
from rabhan_auth.services.token_service import TokenService

logger = logging.getLogger(__name__)

PASSWORD_RESET_TTL = timedelta(hours=1)
LOGIN_VERIFIED_TTL_SECONDS = 10 * 60
LOGIN_OTP_MAPPING_TTL_SECONDS = 5 * 60
CONTRACTOR_FIELDS = ("company_name", "cr_number", "vat_number")


def identity_view(identity, user_type: UserType) -> IdentityView:
    is_contractor = user_type == UserType.CONTRACTOR
    return IdentityView(
        id=identity.id,
        first_name=identity.first_name,
        last_name=identity.last_name,
        email=identity.email,
        role=user_type,
        phone=identity.phone,
        national_id=identity.national_id,
        user_type=identity.business_type if is_contractor else identity.user_type,
        status=identity.status,
        email_verified=identity.email_verified,
        phone_verified=identity.phone_verified,
        bnpl_eligible=False if is_contractor else identity.bnpl_eligible,
        company_name=identity.company_name if is_contractor else None,
        last_login_at=identity.last_login_at,
    )


def mask_phone(phone: str | None) -> str:
    """Keep the dial code, the first two and the last four local digits."""
    if not phone:
        return ""
    local = phone
    for dial_code in ("+966", "+91", "+1"):
        if phone.startswith(dial_code):
            local = phone[len(dial_code):]
            break
    if len(local) < 6:
        return phone
    prefix = phone[: len(phone) - len(local)]
    return f"{prefix}{local[:2]}{'*' * (len(local) - 6)}{local[-4:]}"


class AuthService:
    def __init__(
        self,
        session_factory: sessionmaker,
        store: EphemeralStore,
        directory: IdentityDirectory,
        phone_verification: PhoneVerificationService,
        token_service: TokenService,
        hasher: PasswordHasher,
        settings: Settings,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session_factory = session_factory
        self.store = store
        self.directory = directory
        self.phone_verification = phone_verification
        self.token_service = token_service
        self.hasher = hasher
        self.settings = settings
        self._clock = clock

    # registration

    def register_user(self, data: RegisterRequest) -> AuthTokens:
        return self._register(UserType.USER, data, {"user_type": data.user_type, "role": UserType.USER.value})

    def register_contractor(self, data: ContractorRegisterRequest) -> AuthTokens:
        extra = {
            "business_type": "llc" if data.user_type.upper() == "BUSINESS" else "individual",
            "company_name": data.company_name or "To be updated",
            "cr_number": data.cr_number or None,
            "vat_number": data.vat_number or None,
        }
        return self._register(UserType.CONTRACTOR, data, extra)

    def _register(self, user_type: UserType, data: RegisterRequest, extra: dict) -> AuthTokens:
        validate_password(data.password)

        phone = None
        phone_verified = False
        if data.phone:
            validation = self.phone_verification.validate(data.phone)
            if not validation.is_valid:
                raise InvalidPhoneFormat()
            phone = validation.formatted
            phone_verified = self.phone_verification.is_phone_verified(phone)
            if not phone_verified and self.settings.is_production:
                raise PhoneVerificationRequired()

        email = data.email.lower()
        national_id = (data.national_id or "").strip() or None
        password_hash = self.hasher.hash(data.password)
        repo = self.directory.repository_for(user_type)

        try:
            with self.session_factory.begin() as db:
                conflict = repo.find_conflicting_field(db, email, phone, national_id)
                if conflict:
                    raise DuplicateField(conflict)
                identity = repo.create(
                    db,
                    first_name=data.first_name.strip(),
                    last_name=data.last_name.strip(),
                    email=email,
                    password_hash=password_hash,
                    phone=phone,
                    national_id=national_id,
                    provider="EMAIL",
                    status=IdentityStatus.PENDING.value,
                    email_verified=False,
                    phone_verified=phone_verified,
                    phone_verified_at=self._clock() if phone_verified else None,
                    **extra,
                )
                tokens = self._open_session(db, repo, identity)
        except IntegrityError as exc:
            field = duplicate_field_from_error(exc)
            if field:
                raise DuplicateField(field) from exc
            logger.error("%s registration failed for %s: %s", user_type.value, email, exc)
            raise

        event = "USER_REGISTERED" if user_type == UserType.USER else "CONTRACTOR_REGISTRATION"
        log_auth_event(event, tokens.user.id, email=email, role=user_type.value, provider="EMAIL")
        if user_type == UserType.CONTRACTOR:
            self._cache_contractor(tokens.user)
        logger.info("%s registered: %s", user_type.value, email)
        return tokens

    # login

    def _is_dev_credential(self, email: str) -> bool:
        if not self.settings.dev_login_bypass_enabled:
            return False
        emails = {item.lower() for item in self.settings.DEV_CREDENTIAL_EMAILS}
        domains = [item.lower() for item in self.settings.DEV_CREDENTIAL_DOMAINS]
        return email in emails or any(email.endswith(domain) for domain in domains)

    def _require_login_otp(self, email: str) -> None:
        if self._is_dev_credential(email):
            logger.info("Development login bypass: skipping OTP check for %s", email)
            return
        try:
            verified = self.store.get(f"login_verified:{email}") == "true"
        except StoreUnavailable:
            verified = False
        if not verified:
            log_security_event("LOGIN_OTP_NOT_VERIFIED", Severity.LOW, email=email)
            raise OTPVerificationRequired()

    def login(self, data: LoginRequest, user_agent: str | None = None, ip_address: str | None = None) -> AuthTokens:
        user_type = UserType(data.user_type)
        repo = self.directory.repository_for(user_type)
        email = data.email.lower() if data.email else None
        if email:
            self._require_login_otp(email)

        with self.session_factory() as db:
            if email:
                identity = repo.find_by_email(db, email)
            else:
                validation = self.phone_verification.validate(data.phone)
                identity = repo.find_by_phone(db, validation.formatted) if validation.is_valid else None

            if identity is None:
                log_security_event(
                    f"LOGIN_FAILED_{user_type.value}_NOT_FOUND",
                    Severity.LOW,
                    identifier=email or data.phone,
                    login_type="email" if email else "phone",
                    user_type=user_type.value,
                )
                raise InvalidCredentials()

            now = self._clock()
            if identity.locked_until and identity.locked_until > now:
                log_security_event(
                    "LOGIN_ATTEMPT_LOCKED_ACCOUNT", Severity.MEDIUM, identity_id=identity.id, user_type=user_type.value
                )
                raise AccountLocked()

            if not self.hasher.verify(data.password, identity.password_hash):
                self._record_failed_login(db, repo, identity.id, now)
                db.commit()
                log_security_event(
                    "LOGIN_FAILED_INVALID_PASSWORD", Severity.MEDIUM, identity_id=identity.id, user_type=user_type.value
                )
                raise InvalidCredentials()

            if identity.status not in LOGIN_ALLOWED_STATUSES:
                log_security_event(
                    "LOGIN_FAILED_INACTIVE_ACCOUNT",
                    Severity.MEDIUM,
                    identity_id=identity.id,
                    status=identity.status,
                    user_type=user_type.value,
                )
                raise AccountNotActive()

            repo.reset_login_attempts(db, identity.id)
            if identity.phone and not identity.phone_verified and self.phone_verification.is_phone_verified(identity.phone):
                repo.mark_phone_verified(db, identity.id, identity.phone, now)
            identity.last_login_at = now
            tokens = self._open_session(
                db, repo, identity, device_id=data.device_id, user_agent=user_agent, ip_address=ip_address
            )
            db.commit()

        if email:
            self._forget(f"login_verified:{email}")
        if user_type == UserType.CONTRACTOR:
            self._clear_contractor_cache(tokens.user.id)
        log_auth_event(
            f"{user_type.value}_LOGIN", tokens.user.id, device_id=data.device_id, provider="EMAIL", user_type=user_type.value
        )
        return tokens

    def _record_failed_login(self, db: Session, repo: IdentityRepository, identity_id: str, now: datetime) -> int:
        attempts = repo.increment_login_attempts(db, identity_id)
        if attempts >= self.settings.MAX_LOGIN_ATTEMPTS:
            repo.lock(db, identity_id, now + timedelta(minutes=self.settings.ACCOUNT_LOCK_MINUTES))
            log_security_event(
                "ACCOUNT_LOCKED_MAX_ATTEMPTS",
                Severity.HIGH,
                identity_id=identity_id,
                user_type=repo.user_type.value,
                attempts=attempts,
            )
        return attempts

    # sessions

    def _open_session(
        self,
        db: Session,
        repo: IdentityRepository,
        identity,
        device_id: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> AuthTokens:
        session_id = str(uuid.uuid4())
        pair = self.token_service.issue_pair(identity.id, identity.email, repo.user_type.value, session_id)
        repo.create_session(
            db,
            identity.id,
            session_id,
            pair.refresh_token,
            pair.refresh_expires_at,
            device_id=device_id,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        return AuthTokens(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
            user=identity_view(identity, repo.user_type),
        )

    def refresh_token(self, refresh_token: str) -> AuthTokens:
        try:
            payload = self.token_service.verify_refresh_token(refresh_token)
        except InvalidToken as exc:
            log_security_event("REFRESH_TOKEN_SIGNATURE_INVALID", Severity.MEDIUM, reason=exc.message)
            raise
        try:
            user_type = UserType(payload.get("role"))
        except ValueError as exc:
            log_security_event("REFRESH_TOKEN_ROLE_INVALID", Severity.MEDIUM, session_id=payload.get("sid"))
            raise InvalidToken() from exc
        repo = self.directory.repository_for(user_type)

        with self.session_factory.begin() as db:
            found = repo.find_live_session(db, refresh_token, self._clock())
            if found is None:
                log_security_event("REFRESH_TOKEN_INVALID", Severity.MEDIUM, session_id=payload.get("sid"))
                raise InvalidRefreshToken()
            session, identity = found
            if identity.status not in LOGIN_ALLOWED_STATUSES:
                log_security_event(
                    "REFRESH_TOKEN_INACTIVE_ACCOUNT",
                    Severity.MEDIUM,
                    identity_id=identity.id,
                    status=identity.status,
                    user_type=user_type.value,
                )
                raise AccountNotActive("User account is not active")

            client = {"device_id": session.device_id, "user_agent": session.user_agent, "ip_address": session.ip_address}
            repo.delete_session_by_id(db, session.id)
            tokens = self._open_session(db, repo, identity, **client)

        log_auth_event(f"{user_type.value}_TOKEN_REFRESH", tokens.user.id, previous_session_id=payload.get("sid"))
        return tokens

    def session_exists(self, identity_id: str, session_id: str, user_type: UserType | str) -> bool:
        repo = self.directory.repository_for(user_type)
        with self.session_factory() as db:
            return repo.session_exists(db, identity_id, session_id)

    def logout(self, identity_id: str, session_id: str, user_type: UserType | str) -> bool:
        user_type = UserType(user_type)
        repo = self.directory.repository_for(user_type)
        with self.session_factory.begin() as db:
            deleted = repo.delete_session(db, identity_id, session_id)
        if user_type == UserType.CONTRACTOR:
            self._clear_contractor_cache(identity_id)
        log_auth_event(f"{user_type.value}_LOGOUT", identity_id, session_id=session_id, deleted=bool(deleted))
        return bool(deleted)

    # passwords

    def request_password_reset(self, email: str) -> None:
        email = email.lower()
        repo = self.directory.repository_for(UserType.CONTRACTOR)
        expires_at = self._clock() + PASSWORD_RESET_TTL
        token = generate_secure_token(32)

        with self.session_factory.begin() as db:
            contractor = repo.find_by_email(db, email)
            if contractor is None:
                log_security_event("PASSWORD_RESET_REQUEST_UNKNOWN_EMAIL", Severity.LOW, email=email)
                return
            contractor_id = contractor.id
            db.add(PasswordResetToken(contractor_id=contractor_id, token=token, expires_at=expires_at, used=False))

        # Delivering the token belongs to the notification layer outside this core.
        log_auth_event(
            "CONTRACTOR_PASSWORD_RESET_REQUESTED",
            contractor_id,
            email=email,
            token=mask_token(token),
            token_expiry=expires_at.isoformat(),
        )

    def reset_password(self, token: str, new_password: str) -> None:
        validate_password(new_password)
        password_hash = self.hasher.hash(new_password)
        repo = self.directory.repository_for(UserType.CONTRACTOR)

        with self.session_factory.begin() as db:
            record = db.scalars(
                select(PasswordResetToken).where(
                    PasswordResetToken.token == token,
                    PasswordResetToken.expires_at > self._clock(),
                    PasswordResetToken.used.is_(False),
                )
            ).first()
            if record is None:
                log_security_event("INVALID_PASSWORD_RESET_TOKEN", Severity.MEDIUM, token=mask_token(token))
                raise InvalidOrExpiredToken()

            contractor_id = record.contractor_id
            db.execute(
                update(Contractor)
                .where(Contractor.id == contractor_id)
                .values(password_hash=password_hash, login_attempts=0, locked_until=None)
            )
            record.used = True
            sessions_deleted = repo.delete_all_sessions(db, contractor_id)
            token_id = record.id

        self._clear_contractor_cache(contractor_id)
        log_auth_event(
            "CONTRACTOR_PASSWORD_RESET_COMPLETED", contractor_id, token_id=token_id, sessions_deleted=sessions_deleted
        )

    def change_password(
        self,
        identity_id: str,
        old_password: str,
        new_password: str,
        user_type: UserType | str,
    ) -> None:
        user_type = UserType(user_type)
        repo = self.directory.repository_for(user_type)

        with self.session_factory.begin() as db:
            identity = repo.find_by_id(db, identity_id)
            if identity is None:
                raise IdentityNotFound()
            if not self.hasher.verify(old_password, identity.password_hash):
                log_security_event(
                    "PASSWORD_CHANGE_INVALID_OLD_PASSWORD", Severity.MEDIUM, identity_id=identity_id, user_type=user_type.value
                )
                raise InvalidOldPassword()
            validate_password(new_password)
            identity.password_hash = self.hasher.hash(new_password)

        if user_type == UserType.CONTRACTOR:
            self._clear_contractor_cache(identity_id)
        log_auth_event(f"{user_type.value}_PASSWORD_CHANGED", identity_id)

    def check_password_strength(self, password: str) -> dict:
        return check_password_strength(password)

    # email-first login with an SMS code

    def _login_identity(self, email: str, user_type: UserType):
        repo = self.directory.repository_for(user_type)
        with self.session_factory() as db:
            identity = repo.find_by_email(db, email.lower())
            if identity is None or not identity.phone:
                return None
            return identity.id, identity.phone

    def lookup_email_for_login(self, email: str, user_type: UserType | str) -> Optional[dict]:
        user_type = UserType(user_type)
        found = self._login_identity(email, user_type)
        if found is None:
            return None
        return {"masked_phone": mask_phone(found[1]), "user_type": user_type.value}

    def send_login_otp(self, email: str, user_type: UserType | str) -> Optional[dict]:
        email = email.lower()
        user_type = UserType(user_type)
        found = self._login_identity(email, user_type)
        if found is None:
            log_security_event("LOGIN_OTP_UNKNOWN_EMAIL", Severity.LOW, email=email, user_type=user_type.value)
            return None
        identity_id, phone = found

        self.phone_verification.send_otp(phone, user_id=identity_id)
        self.store.set_with_ttl(f"login_email_otp:{email}:{user_type.value}", phone, LOGIN_OTP_MAPPING_TTL_SECONDS)

        masked = mask_phone(phone)
        log_auth_event(f"{user_type.value}_LOGIN_OTP_SENT_VIA_EMAIL", identity_id, email=email, masked_phone=masked)
        return {"masked_phone": masked}

    def verify_login_otp(self, email: str, otp: str, user_type: UserType | str) -> bool:
        email = email.lower()
        user_type = UserType(user_type)
        mapping_key = f"login_email_otp:{email}:{user_type.value}"
        phone = self.store.get(mapping_key)
        if phone is None:
            raise OTPExpiredOrNotFound("OTP verification session expired")

        self.phone_verification.verify_otp(phone, otp)
        self.store.set_with_ttl(f"login_verified:{email}", "true", LOGIN_VERIFIED_TTL_SECONDS)
        self.store.delete(mapping_key)
        return True

    # profile

    def get_profile(self, identity_id: str, user_type: UserType | str) -> IdentityView:
        user_type = UserType(user_type)
        if user_type == UserType.CONTRACTOR:
            cached = self._cached_contractor(identity_id)
            if cached is not None:
                return cached

        repo = self.directory.repository_for(user_type)
        with self.session_factory() as db:
            identity = repo.find_by_id(db, identity_id)
            if identity is None:
                raise IdentityNotFound()
            view = identity_view(identity, user_type)

        if user_type == UserType.CONTRACTOR:
            self._cache_contractor(view)
        return view

    def update_profile(self, identity_id: str, user_type: UserType | str, changes: ProfileUpdate) -> IdentityView:
        user_type = UserType(user_type)
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        if user_type == UserType.USER:
            fields = {key: value for key, value in fields.items() if key not in CONTRACTOR_FIELDS}

        repo = self.directory.repository_for(user_type)
        with self.session_factory.begin() as db:
            identity = repo.find_by_id(db, identity_id)
            if identity is None:
                raise IdentityNotFound()
            for field, value in fields.items():
                setattr(identity, field, value)
            db.flush()
            view = identity_view(identity, user_type)

        if user_type == UserType.CONTRACTOR:
            self._clear_contractor_cache(identity_id)
        logger.info("%s profile updated: %s fields=%s", user_type.value, identity_id, sorted(fields))
        return view

    # contractor read-through cache

    def _cached_contractor(self, contractor_id: str) -> Optional[IdentityView]:
        try:
            raw = self.store.get(f"contractor:{contractor_id}")
        except StoreUnavailable:
            return None
        return IdentityView.model_validate_json(raw) if raw else None

    def _cache_contractor(self, view: IdentityView) -> None:
        try:
            self.store.set_with_ttl(f"contractor:{view.id}", view.model_dump_json(), self.settings.CONTRACTOR_CACHE_SECONDS)
        except StoreUnavailable:
            logger.warning("Contractor cache write skipped for %s", view.id)

    def _clear_contractor_cache(self, contractor_id: str) -> None:
        self._forget(f"contractor:{contractor_id}")

    def _forget(self, key: str) -> None:
        try:
            self.store.delete(key)
        except StoreUnavailable:
            logger.warning("Could not delete ephemeral key %s", key)
