"""
Admin Routes — Webhook follow-up and compliance trail access.
All endpoints require the `X-Admin-Key` header.
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from offramp.dependencies import (
    require_admin, get_webhook_dispatcher, get_storage_factory, get_webhook_client,
)
from offramp.scheduler import deliver_due_webhooks
from offramp.schemas.schemas import (
    Envelope, WebhookEventResponse, ComplianceEntry, ComplianceTrailResponse,
)
from offramp.services.compliance_service import ComplianceService
from offramp.services.webhook_dispatcher import WebhookDispatcher
from offramp.storage import Storage, get_storage

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get("/webhooks", response_model=Envelope[list[WebhookEventResponse]])
def list_webhook_events(
    status: Optional[str] = Query(None, description="pending | retrying | delivered | failed"),
    limit: int = Query(100, ge=1, le=500),
    storage: Storage = Depends(get_storage),
):
    events = storage.list_webhook_events(status=status, limit=limit)
    return Envelope(data=[WebhookEventResponse.from_model(e) for e in events])


@router.post("/webhooks/{event_id}/retry", response_model=Envelope[WebhookEventResponse])
def retry_webhook_event(
    event_id: str,
    background_tasks: BackgroundTasks,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    storage_factory=Depends(get_storage_factory),
    webhook_client=Depends(get_webhook_client),
):
    """Re-queue a permanently failed event for immediate redelivery."""
    event = dispatcher.retry(event_id)
    background_tasks.add_task(deliver_due_webhooks, storage_factory, webhook_client)
    return Envelope(data=WebhookEventResponse.from_model(event))


@router.get("/compliance/{session_id}", response_model=Envelope[ComplianceTrailResponse])
def get_compliance_trail(session_id: str, storage: Storage = Depends(get_storage)):
    """Full hash-chained compliance trail for a session, with chain verification."""
    trail = ComplianceService.get_trail(storage, session_id)
    return Envelope(data=ComplianceTrailResponse(
        session_id=session_id,
        entries=[ComplianceEntry.model_validate(entry) for entry in trail],
        chain=ComplianceService.verify_chain(storage, session_id),
    ))
