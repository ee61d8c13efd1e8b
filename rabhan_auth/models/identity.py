import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String


class UserType(str, Enum):
    USER = "USER"
    CONTRACTOR = "CONTRACTOR"


class IdentityStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    LOCKED = "LOCKED"
    DELETED = "DELETED"


LOGIN_ALLOWED_STATUSES = {IdentityStatus.ACTIVE.value, IdentityStatus.PENDING.value}


def new_id() -> str:
    return str(uuid.uuid4())


class IdentityColumns:
    """Columns shared by the users and contractors tables."""

    id = Column(String(36), primary_key=True, default=new_id)

    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)  # stored lowercase
    phone = Column(String, unique=True, index=True, nullable=True)  # E.164
    national_id = Column(String, unique=True, nullable=True)
    password_hash = Column(String, nullable=False)
    provider = Column(String, default="EMAIL", nullable=False)
    status = Column(String, default=IdentityStatus.PENDING.value, nullable=False)

    email_verified = Column(Boolean, default=False, nullable=False)
    email_verified_at = Column(DateTime, nullable=True)
    phone_verified = Column(Boolean, default=False, nullable=False)
    phone_verified_at = Column(DateTime, nullable=True)

    login_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
