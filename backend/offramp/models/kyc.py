"""
KYC Models — Per-user verification progress and the provider call log.
"""
from offramp.utils.timeutils import utcnow
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Boolean, Float

from offramp.database import Base


class KYCSession(Base):
    __tablename__ = "kyc_sessions"

    id = Column(String(40), primary_key=True, index=True)     # kyc_xxxxxxxx
    partner_id = Column(String(32), ForeignKey("partners.id"), nullable=False, index=True)
    session_id = Column(String(40), ForeignKey("sessions.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    document_type = Column(String(24), nullable=False)
    document_number = Column(String(32), nullable=False)
    holder_name = Column(String(128))

    status = Column(String(16), default="initiated")
    # Statuses: initiated → in_progress → completed, failed from any non-terminal state
    required_methods = Column(JSON, default=list)
    failure_reason = Column(String(64))

    # Flags only ever move false → true
    aadhaar_verified = Column(Boolean, default=False)
    pan_verified = Column(Boolean, default=False)
    face_verified = Column(Boolean, default=False)
    upi_verified = Column(Boolean, default=False)
    bank_verified = Column(Boolean, default=False)
    document_verified = Column(Boolean, default=False)    # driving licence, voter ID or passport
    name_match_verified = Column(Boolean, default=False)

    # Provider-reported names for consistency checking
    aadhaar_name = Column(String(128))
    pan_name = Column(String(128))
    upi_name = Column(String(128))
    bank_name = Column(String(128))
    document_name = Column(String(128))
    verified_name = Column(String(128))   # consolidated name after name match
    name_match_score = Column(Float)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime, nullable=True)


class VerificationAttempt(Base):
    """
    Append-only log of provider calls made for a KYC session.
    Also carries the Aadhaar OTP reference between the two OKYC steps.
    """
    __tablename__ = "kyc_verification_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    kyc_session_id = Column(String(40), ForeignKey("kyc_sessions.id"), nullable=False, index=True)

    # aadhaar_otp | aadhaar | pan | face | upi | bank | name_match | driving_license | voter_id | passport
    method = Column(String(24), nullable=False)
    verified = Column(Boolean, default=False)
    name = Column(String(128))
    reference_id = Column(String(64))
    response = Column(JSON, default=dict)

    created_at = Column(DateTime, default=utcnow)
