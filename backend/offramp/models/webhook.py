"""
Webhook Event Model — Outbound partner notifications and their retry state.
"""
from offramp.utils.timeutils import utcnow
from sqlalchemy import Column, String, Integer, DateTime, Text

from offramp.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(40), primary_key=True, index=True)     # evt_xxxxxxxx
    partner_id = Column(String(32), nullable=False, index=True)
    event_type = Column(String(32), nullable=False)           # deposit.detected | payout.settled
    session_id = Column(String(40))
    transaction_id = Column(String(40))

    webhook_url = Column(String(512), nullable=False)
    payload = Column(Text, nullable=False)      # exact raw JSON body that gets signed and sent
    signature = Column(String(64), nullable=False)

    status = Column(String(16), default="pending", index=True)  # pending | retrying | delivered | failed
    attempts = Column(Integer, default=0)
    max_attempts = Column(Integer, default=3)
    last_attempt = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True, index=True)
    last_status_code = Column(Integer, nullable=True)
    error_message = Column(String(512))

    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
