"""
Session Model — One off-ramp flow attempt by a partner.
Maps to the 'sessions' table.
"""
from offramp.utils.timeutils import utcnow
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey

from offramp.database import Base


class OffRampSession(Base):
    __tablename__ = "sessions"

    id = Column(String(40), primary_key=True, index=True)     # sess_xxxxxxxx
    partner_id = Column(String(32), ForeignKey("partners.id"), nullable=False, index=True)
    token = Column(String(64), unique=True, index=True, nullable=False)

    callback_url = Column(String(512))
    meta = Column("metadata", JSON, default=dict)

    status = Column(String(16), default="active")
    # Statuses: active → completed | expired

    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
