"""
Quote Service — Locks a USD→INR conversion for QUOTE_EXPIRY_MINUTES.
"""
import logging
from datetime import timedelta
from typing import Callable, Optional

from offramp.config import Settings, get_settings
from offramp.errors import NotFoundError, ValidationError
from offramp.models import Quote, OffRampSession
from offramp.services.fee_calculator import calculate_fees
from offramp.services.rate_provider import RateProvider
from offramp.storage.base import Storage
from offramp.utils.ids import new_id
from offramp.utils.timeutils import utcnow
from offramp.utils.validators import SUPPORTED_ASSETS

logger = logging.getLogger(__name__)

# network -> (deposit address, minimum confirmations)
NETWORKS = {
    "polygon": ("0x8e1234567890abcdef1234567890abcdef1234567", 12),
    "ethereum": ("0x1234567890abcdef1234567890abcdef12345678", 12),
    "bsc": ("0xabcdef1234567890abcdef1234567890abcdef12", 15),
    "solana": ("9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM", 1),
}


def normalize_asset(asset: Optional[str]) -> str:
    value = (asset or "").strip().upper()
    if value not in SUPPORTED_ASSETS:
        raise ValidationError(
            f"Unsupported asset '{asset}'",
            details={"field": "asset", "allowed": list(SUPPORTED_ASSETS)},
        )
    return value


def normalize_network(network: Optional[str]) -> str:
    value = (network or "").strip().lower()
    if value not in NETWORKS:
        raise ValidationError(
            f"Unsupported network '{network}'",
            details={"field": "network", "allowed": list(NETWORKS)},
        )
    return value


class QuoteService:
    def __init__(self, storage: Storage, rate_provider: RateProvider,
                 settings: Optional[Settings] = None, clock: Callable = utcnow):
        self.storage = storage
        self.rate_provider = rate_provider
        self.settings = settings or get_settings()
        self.clock = clock

    def create_quote(self, session: OffRampSession, amount_usd, asset: str, network: str) -> Quote:
        """Price `amount_usd` at the current rate and persist the quote.

        The caller is responsible for passing an active session owned by the
        requesting partner.
        """
        asset = normalize_asset(asset)
        network = normalize_network(network)

        rate = self.rate_provider.get_usd_inr_rate()
        fees = calculate_fees(amount_usd, rate).quantized()
        address, confirmations = NETWORKS[network]

        now = self.clock()
        quote = Quote(
            id=new_id("quote"),
            session_id=session.id,
            asset=asset,
            network=network,
            amount_usd=fees.amount_usd,
            fx_rate=fees.fx_rate,
            markup_pct=fees.markup_pct,
            gross_inr=fees.gross_inr,
            tds_amount=fees.tds,
            platform_fee=fees.platform_fee,
            gst_amount=fees.gst,
            estimated_inr=fees.net_inr,
            deposit_address=address,
            min_confirmations=confirmations,
            status="active",
            expires_at=now + timedelta(minutes=self.settings.QUOTE_EXPIRY_MINUTES),
            created_at=now,
            updated_at=now,
        )
        quote = self.storage.add(quote)
        logger.info("[QUOTE] %s: %s %s on %s @ %s -> INR %s",
                    quote.id, fees.amount_usd, asset, network, fees.fx_rate, fees.net_inr)
        return quote

    def get_quote(self, quote_id: str, partner_id: Optional[str] = None) -> Quote:
        """Fetch a quote, flipping an overdue active quote to `expired`.

        With `partner_id`, quotes belonging to another partner are reported
        as missing.
        """
        quote = self.storage.get_quote(quote_id) if quote_id else None
        if quote and partner_id is not None:
            session = self.storage.get_session(quote.session_id)
            if not session or session.partner_id != partner_id:
                quote = None
        if not quote:
            raise NotFoundError("Quote not found")
        return self._apply_expiry(quote)

    def _apply_expiry(self, quote: Quote) -> Quote:
        if quote.status == "active" and quote.expires_at <= self.clock():
            expired = self.storage.transition_quote(quote.id, "active", "expired")
            return expired or self.storage.get_quote(quote.id)
        return quote
