from sqlalchemy import Boolean, Column, String

from rabhan_auth.database import Base
from rabhan_auth.models.identity import IdentityColumns, UserType


class User(IdentityColumns, Base):
    __tablename__ = "users"

    role = Column(String, default=UserType.USER.value, nullable=False)
    user_type = Column(String, default="HOMEOWNER", nullable=False)
    bnpl_eligible = Column(Boolean, default=False, nullable=False)
