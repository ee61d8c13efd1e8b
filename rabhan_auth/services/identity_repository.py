"""Role-specific access to the identity and session tables.

``UserRepository`` and ``ContractorRepository`` share one contract so the
auth core picks a repository once per call from the caller's ``UserType``.
All methods take the caller's SQLAlchemy session; transaction boundaries
belong to the caller.
"""
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rabhan_auth.models.contractor import Contractor
from rabhan_auth.models.contractor_session import ContractorSession
from rabhan_auth.models.identity import UserType
from rabhan_auth.models.user import User
from rabhan_auth.models.user_session import UserSession

UNIQUE_FIELDS = ("email", "phone", "national_id")


class IdentityRepository:
    model = None
    session_model = None
    owner_field = None
    user_type = None

    # identities

    def find_by_id(self, db: Session, identity_id: str):
        return db.get(self.model, identity_id)

    def find_by_email(self, db: Session, email: str):
        return db.scalars(select(self.model).where(self.model.email == email.lower())).first()

    def find_by_phone(self, db: Session, phone: str):
        return db.scalars(select(self.model).where(self.model.phone == phone)).first()

    def find_conflicting_field(self, db: Session, email: str, phone: str | None, national_id: str | None) -> Optional[str]:
        candidates = {"email": email.lower(), "phone": phone, "national_id": national_id}
        for field in UNIQUE_FIELDS:
            value = candidates[field]
            if value is None:
                continue
            column = getattr(self.model, field)
            if db.scalar(select(func.count()).select_from(self.model).where(column == value)):
                return field
        return None

    def create(self, db: Session, **fields):
        fields["email"] = fields["email"].lower()
        identity = self.model(**fields)
        db.add(identity)
        db.flush()
        return identity

    def increment_login_attempts(self, db: Session, identity_id: str) -> int:
        db.execute(
            update(self.model)
            .where(self.model.id == identity_id)
            .values(login_attempts=self.model.login_attempts + 1)
        )
        return db.scalar(select(self.model.login_attempts).where(self.model.id == identity_id))

    def lock(self, db: Session, identity_id: str, until: datetime) -> None:
        db.execute(update(self.model).where(self.model.id == identity_id).values(locked_until=until))

    def reset_login_attempts(self, db: Session, identity_id: str) -> None:
        db.execute(
            update(self.model).where(self.model.id == identity_id).values(login_attempts=0, locked_until=None)
        )

    def mark_phone_verified(self, db: Session, identity_id: str, phone: str, at: datetime) -> int:
        # Only the row that owns the verified number is touched
        result = db.execute(
            update(self.model)
            .where(self.model.id == identity_id, self.model.phone == phone)
            .values(phone_verified=True, phone_verified_at=at)
        )
        return result.rowcount

    def mark_email_verified(self, db: Session, identity_id: str, email: str, at: datetime) -> int:
        result = db.execute(
            update(self.model)
            .where(self.model.id == identity_id, self.model.email == email.lower())
            .values(email_verified=True, email_verified_at=at)
        )
        return result.rowcount

    # sessions

    def _owner_column(self):
        return getattr(self.session_model, self.owner_field)

    def create_session(
        self,
        db: Session,
        identity_id: str,
        session_id: str,
        refresh_token: str,
        expires_at: datetime,
        device_id: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ):
        session = self.session_model(
            id=session_id,
            refresh_token=refresh_token,
            device_id=device_id,
            user_agent=user_agent,
            ip_address=ip_address,
            expires_at=expires_at,
            **{self.owner_field: identity_id},
        )
        db.add(session)
        db.flush()
        return session

    def find_live_session(self, db: Session, refresh_token: str, now: datetime) -> Optional[Tuple[object, object]]:
        row = db.execute(
            select(self.session_model, self.model)
            .join(self.model, self.model.id == self._owner_column())
            .where(self.session_model.refresh_token == refresh_token, self.session_model.expires_at > now)
        ).first()
        return (row[0], row[1]) if row else None

    def session_exists(self, db: Session, identity_id: str, session_id: str) -> bool:
        return bool(
            db.scalar(
                select(func.count())
                .select_from(self.session_model)
                .where(self.session_model.id == session_id, self._owner_column() == identity_id)
            )
        )

    def delete_session(self, db: Session, identity_id: str, session_id: str) -> int:
        result = db.execute(
            delete(self.session_model).where(
                self.session_model.id == session_id, self._owner_column() == identity_id
            )
        )
        return result.rowcount

    def delete_session_by_id(self, db: Session, session_id: str) -> int:
        return db.execute(delete(self.session_model).where(self.session_model.id == session_id)).rowcount

    def delete_all_sessions(self, db: Session, identity_id: str) -> int:
        return db.execute(delete(self.session_model).where(self._owner_column() == identity_id)).rowcount

    def count_sessions(self, db: Session, identity_id: str) -> int:
        return db.scalar(
            select(func.count()).select_from(self.session_model).where(self._owner_column() == identity_id)
        )


class UserRepository(IdentityRepository):
    model = User
    session_model = UserSession
    owner_field = "user_id"
    user_type = UserType.USER


class ContractorRepository(IdentityRepository):
    model = Contractor
    session_model = ContractorSession
    owner_field = "contractor_id"
    user_type = UserType.CONTRACTOR


def duplicate_field_from_error(error: IntegrityError) -> Optional[str]:
    """Best-effort mapping of a unique-constraint violation to its column."""
    message = str(error.orig).lower()
    for field in UNIQUE_FIELDS:
        if f".{field}" in message or f"_{field}_key" in message or f"({field})" in message:
            return field
    return None
