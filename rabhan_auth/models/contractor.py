from sqlalchemy import Column, String

from rabhan_auth.database import Base
from rabhan_auth.models.identity import IdentityColumns, UserType


class Contractor(IdentityColumns, Base):
    __tablename__ = "contractors"

    business_type = Column(String, default="individual", nullable=False)
    company_name = Column(String, default="To be updated", nullable=False)
    cr_number = Column(String, nullable=True)
    vat_number = Column(String, nullable=True)

    @property
    def role(self) -> str:
        return UserType.CONTRACTOR.value
