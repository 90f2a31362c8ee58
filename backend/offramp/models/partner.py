"""
Partner Model — Regulated fintech partners integrating the off-ramp API.
"""
from offramp.utils.timeutils import utcnow
from sqlalchemy import Column, String, DateTime, JSON

from offramp.database import Base


class Partner(Base):
    __tablename__ = "partners"

    id = Column(String(32), primary_key=True, index=True)     # partner_xxxxxx
    name = Column(String(128), nullable=False)
    email = Column(String(128), nullable=False)

    api_key = Column(String(64), unique=True, index=True, nullable=False)
    webhook_url = Column(String(512))
    webhook_secret = Column(String(64), nullable=False)

    status = Column(String(16), default="active")  # active | suspended

    # Verification methods this partner requires before a transaction; null = global default
    required_kyc_methods = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
