import logging
from datetime import datetime
from typing import Callable, Dict

from sqlalchemy.orm import sessionmaker

from rabhan_auth.models.identity import UserType
from rabhan_auth.services.identity_repository import (
    ContractorRepository,
    IdentityRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)


class IdentityDirectory:
    """Repository selection plus the verification-flag writes shared by the engines."""

    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = datetime.utcnow):
        self.session_factory = session_factory
        self._clock = clock
        self._repositories: Dict[UserType, IdentityRepository] = {
            UserType.USER: UserRepository(),
            UserType.CONTRACTOR: ContractorRepository(),
        }

    def repository_for(self, user_type: UserType | str) -> IdentityRepository:
        return self._repositories[UserType(user_type)]

    def mark_phone_verified(self, identity_id: str, user_type: UserType | str, phone: str) -> bool:
        with self.session_factory.begin() as db:
            updated = self.repository_for(user_type).mark_phone_verified(db, identity_id, phone, self._clock())
        if not updated:
            logger.warning("Phone %s is not registered to %s %s", phone, UserType(user_type).value, identity_id)
        return bool(updated)

    def mark_email_verified(self, identity_id: str, user_type: UserType | str, email: str) -> bool:
        with self.session_factory.begin() as db:
            updated = self.repository_for(user_type).mark_email_verified(db, identity_id, email, self._clock())
        if not updated:
            logger.warning("Email %s is not registered to %s %s", email, UserType(user_type).value, identity_id)
        return bool(updated)
