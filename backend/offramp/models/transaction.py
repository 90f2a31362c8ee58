"""
Transaction Model — Deposit → payout pipeline for one quote.
"""
from offramp.utils.timeutils import utcnow
from sqlalchemy import Column, String, DateTime, ForeignKey

from offramp.database import Base
from offramp.models.quote import MONEY


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(40), primary_key=True, index=True)     # txn_xxxxxxxx
    session_id = Column(String(40), ForeignKey("sessions.id"), nullable=False, index=True)
    quote_id = Column(String(40), ForeignKey("quotes.id"), nullable=False, index=True)
    kyc_session_id = Column(String(40), ForeignKey("kyc_sessions.id"), nullable=False)
    partner_id = Column(String(32), ForeignKey("partners.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)

    asset = Column(String(8), nullable=False)
    network = Column(String(16), nullable=False)

    status = Column(String(24), default="pending_deposit")
    # Statuses: pending_deposit → deposit_confirmed → processing → completed
    #           pending_deposit → expired; any non-terminal → failed
    failure_reason = Column(String(64))

    # Deposit leg
    deposit_address = Column(String(128))
    expected_amount = Column(MONEY, nullable=False)
    deposited_amount = Column(MONEY)
    deposit_tx_hash = Column(String(128))

    # Payout leg
    payout_amount = Column(MONEY)
    payout_channel = Column(String(8))          # upi | bank | imps | neft
    payout_destination = Column(String(128))    # VPA or account reference
    payout_id = Column(String(40))
    payout_tx_hash = Column(String(40))         # UTR

    deposit_confirmed_at = Column(DateTime, nullable=True)
    payout_initiated_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
