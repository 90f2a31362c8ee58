"""
Webhook Test Route — lets partners check their signature verification.
"""
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from offramp.dependencies import get_current_partner
from offramp.models import Partner
from offramp.schemas.schemas import Envelope, WebhookTestResponse
from offramp.utils.signing import verify

router = APIRouter(prefix="/api/v1", tags=["Webhooks"])


@router.post("/webhook-test", response_model=Envelope[WebhookTestResponse])
async def webhook_test(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    x_timestamp: Optional[str] = Header(None, alias="X-Timestamp"),
    x_event: Optional[str] = Header(None, alias="X-Event"),
    partner: Partner = Depends(get_current_partner),
):
    """Verify `X-Signature` over the raw body with the partner's webhook secret."""
    body = await request.body()
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None

    return Envelope(data=WebhookTestResponse(
        signature_valid=verify(body, x_signature, partner.webhook_secret),
        event=x_event,
        timestamp=x_timestamp,
        payload=payload,
    ))
