"""
Quote Routes — USD→INR quotes with fee breakdown and deposit instructions.
"""
from fastapi import APIRouter, Depends, Query

from offramp.dependencies import get_current_partner, get_partner_service, get_quote_service
from offramp.models import Partner
from offramp.schemas.schemas import Envelope, QuoteResponse
from offramp.services.partner_service import PartnerService
from offramp.services.quote_service import QuoteService

router = APIRouter(prefix="/api/v1/quotes", tags=["Quotes"])


@router.get("", response_model=Envelope[QuoteResponse])
def get_quote(
    session_id: str = Query(..., alias="sessionId"),
    asset: str = Query(..., description="USDC | USDT"),
    network: str = Query(..., description="polygon | ethereum | bsc | solana"),
    amount_usd: str = Query(..., alias="amountUsd"),
    partner: Partner = Depends(get_current_partner),
    partners: PartnerService = Depends(get_partner_service),
    quotes: QuoteService = Depends(get_quote_service),
):
    """Lock a conversion quote for QUOTE_EXPIRY_MINUTES."""
    session = partners.require_active_session(session_id, partner)
    quote = quotes.create_quote(session, amount_usd, asset, network)
    return Envelope(data=QuoteResponse.from_model(quote))


@router.get("/{quote_id}", response_model=Envelope[QuoteResponse])
def get_quote_by_id(
    quote_id: str,
    partner: Partner = Depends(get_current_partner),
    quotes: QuoteService = Depends(get_quote_service),
):
    quote = quotes.get_quote(quote_id, partner_id=partner.id)
    return Envelope(data=QuoteResponse.from_model(quote))
