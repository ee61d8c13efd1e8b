from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey
from rabhan_auth.database import Base


class ContractorSession(Base):
    __tablename__ = "contractor_sessions"

    id = Column(String(36), primary_key=True)
    contractor_id = Column(String(36), ForeignKey("contractors.id"), nullable=False, index=True)
    refresh_token = Column(String, unique=True, nullable=False, index=True)
    device_id = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
