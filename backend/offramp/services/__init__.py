from offramp.services.compliance_service import ComplianceService
from offramp.services.fee_calculator import FeeBreakdown, calculate_fees
from offramp.services.kyc_gateway import KycGateway, VerificationResult, make_kyc_gateway
from offramp.services.kyc_service import KycService
from offramp.services.partner_service import PartnerService
from offramp.services.quote_service import QuoteService
from offramp.services.rate_provider import RateProvider, make_rate_provider
from offramp.services.transaction_service import TransactionService, PayoutRail, SimulatedPayoutRail
from offramp.services.webhook_dispatcher import WebhookDispatcher

__all__ = [
    "ComplianceService", "FeeBreakdown", "calculate_fees", "KycGateway", "VerificationResult",
    "make_kyc_gateway", "KycService", "PartnerService", "QuoteService", "RateProvider",
    "make_rate_provider", "TransactionService", "PayoutRail", "SimulatedPayoutRail",
    "WebhookDispatcher",
]
