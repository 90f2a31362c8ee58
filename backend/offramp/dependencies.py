"""
FastAPI Dependencies — authentication and service wiring.

Provider implementations (rate source, KYC gateway, payout rail) are chosen
once from ENVIRONMENT; tests replace any of these through
`app.dependency_overrides`.
"""
import hmac
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from offramp.config import get_settings
from offramp.errors import AuthError
from offramp.models import Partner
from offramp.services.kyc_gateway import KycGateway, make_kyc_gateway
from offramp.services.kyc_service import KycService
from offramp.services.partner_service import PartnerService
from offramp.services.quote_service import QuoteService
from offramp.services.rate_provider import RateProvider, make_rate_provider
from offramp.services.transaction_service import TransactionService, PayoutRail, SimulatedPayoutRail
from offramp.services.webhook_dispatcher import WebhookDispatcher
from offramp.storage import Storage, get_storage, open_storage


# ─── Providers ───────────────────────────────────────────────────────

@lru_cache()
def get_rate_provider() -> RateProvider:
    return make_rate_provider(get_settings())


@lru_cache()
def get_kyc_gateway() -> KycGateway:
    return make_kyc_gateway(get_settings())


@lru_cache()
def get_payout_rail() -> PayoutRail:
    # No real rail is wired up; both environments settle through the simulator.
    return SimulatedPayoutRail()


def get_storage_factory():
    """Context-manager factory used by background webhook delivery."""
    return open_storage


def get_webhook_client():
    """httpx client for webhook delivery; None lets the dispatcher open its own."""
    return None


# ─── Services ────────────────────────────────────────────────────────

def get_partner_service(storage: Storage = Depends(get_storage)) -> PartnerService:
    return PartnerService(storage)


def get_quote_service(
    storage: Storage = Depends(get_storage),
    rate_provider: RateProvider = Depends(get_rate_provider),
) -> QuoteService:
    return QuoteService(storage, rate_provider)


def get_kyc_service(
    storage: Storage = Depends(get_storage),
    gateway: KycGateway = Depends(get_kyc_gateway),
) -> KycService:
    return KycService(storage, gateway)


def get_webhook_dispatcher(
    storage: Storage = Depends(get_storage),
    client=Depends(get_webhook_client),
) -> WebhookDispatcher:
    return WebhookDispatcher(storage, client=client)


def get_transaction_service(
    storage: Storage = Depends(get_storage),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    payout_rail: PayoutRail = Depends(get_payout_rail),
) -> TransactionService:
    return TransactionService(storage, dispatcher, payout_rail)


# ─── Auth ────────────────────────────────────────────────────────────

def get_current_partner(
    authorization: Optional[str] = Header(None),
    partners: PartnerService = Depends(get_partner_service),
) -> Partner:
    """Resolve `Authorization: Bearer <apiKey>` to an active partner."""
    api_key = None
    if authorization and authorization.lower().startswith("bearer "):
        api_key = authorization[7:].strip()
    return partners.authenticate(api_key)


def require_admin(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> bool:
    expected = get_settings().ADMIN_API_KEY
    if not expected or not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        raise AuthError("Invalid admin key")
    return True
