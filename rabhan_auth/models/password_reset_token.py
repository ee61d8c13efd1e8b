from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from rabhan_auth.database import Base
from rabhan_auth.models.identity import new_id


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    contractor_id = Column(String(36), ForeignKey("contractors.id"), nullable=False, index=True)
    token = Column(String, unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
