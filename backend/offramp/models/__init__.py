from offramp.models.partner import Partner
from offramp.models.session import OffRampSession
from offramp.models.quote import Quote
from offramp.models.kyc import KYCSession, VerificationAttempt
from offramp.models.transaction import Transaction
from offramp.models.webhook import WebhookEvent
from offramp.models.audit import ComplianceLog

__all__ = [
    "Partner", "OffRampSession", "Quote", "KYCSession", "VerificationAttempt",
    "Transaction", "WebhookEvent", "ComplianceLog",
]
