"""
Compliance Log Model — Immutable, tamper-evident audit trail.
Every regulated action is SHA-256 hashed and chained per session.
"""
from offramp.utils.timeutils import utcnow
from sqlalchemy import Column, String, Integer, DateTime, JSON

from offramp.database import Base


class ComplianceLog(Base):
    __tablename__ = "compliance_logs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    session_id = Column(String(40), nullable=False, index=True)
    partner_id = Column(String(32), index=True)

    action = Column(String(50), nullable=False)
    # Actions: KYC_SESSION_CREATED, AADHAAR_OTP_SENT, AADHAAR_VERIFICATION,
    #          PAN_VERIFICATION, FACE_VERIFICATION, UPI_VERIFICATION,
    #          BANK_VERIFICATION, DRIVING_LICENSE_VERIFICATION, VOTER_ID_VERIFICATION,
    #          PASSPORT_VERIFICATION, NAME_MATCH_VERIFICATION, TRANSACTION_CREATED,
    #          DEPOSIT_CONFIRMED, DEPOSIT_MISMATCH, PAYOUT_SETTLED,
    #          PAYOUT_FAILED, TRANSACTION_CANCELLED

    payload_hash = Column(String(64))       # chain hash of the action payload
    previous_hash = Column(String(64))      # hash of the previous entry for this session

    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=utcnow)
