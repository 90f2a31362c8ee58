"""
Session Routes — Off-ramp session lifecycle.
Handles: creation (partner API key) and status lookup by session token.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header

from offramp.dependencies import get_current_partner, get_partner_service
from offramp.models import Partner
from offramp.schemas.schemas import Envelope, SessionCreateRequest, SessionResponse
from offramp.services.partner_service import PartnerService

router = APIRouter(prefix="/api/v1/session", tags=["Session"])


@router.post("/create", response_model=Envelope[SessionResponse])
def create_session(
    payload: SessionCreateRequest,
    partner: Partner = Depends(get_current_partner),
    partners: PartnerService = Depends(get_partner_service),
):
    """Open a new off-ramp session. The token is only ever returned here."""
    session = partners.create_session(partner, payload.callback_url, payload.metadata)
    return Envelope(data=SessionResponse.from_model(session, include_token=True))


@router.get("/status", response_model=Envelope[SessionResponse])
def get_session_status(
    x_session_token: Optional[str] = Header(None, alias="X-Session-Token"),
    partners: PartnerService = Depends(get_partner_service),
):
    """Current status of the session identified by its token."""
    session = partners.get_session_by_token(x_session_token)
    return Envelope(data=SessionResponse.from_model(session))
