"""
Webhook Dispatcher — durable, signed partner notifications.

Events are persisted with the exact body that is signed and sent. Each
delivery attempt first claims the event (compare-and-swap on `attempts`,
pushing `next_retry_at` forward as a lease), so overlapping sweeps never
send the same attempt twice.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from offramp.config import Settings, get_settings
from offramp.errors import DeliveryError, NotFoundError, StateConflictError
from offramp.models import WebhookEvent
from offramp.storage.base import Storage
from offramp.utils.ids import new_id
from offramp.utils.signing import canonical_json, sign
from offramp.utils.timeutils import utcnow, unix_seconds

logger = logging.getLogger(__name__)

DEPOSIT_DETECTED = "deposit.detected"
PAYOUT_SETTLED = "payout.settled"
DELIVERABLE_STATUSES = ("pending", "retrying")


class WebhookDispatcher:
    def __init__(self, storage: Storage, settings: Optional[Settings] = None,
                 clock: Callable = utcnow, client: Optional[httpx.Client] = None):
        self.storage = storage
        self.settings = settings or get_settings()
        self.clock = clock
        self._client = client

    # ─── Queue ─────────────────────────────────────────────────────────

    def enqueue(self, partner_id: str, event_type: str, url: Optional[str], payload: dict,
                secret: str, session_id: Optional[str] = None,
                transaction_id: Optional[str] = None) -> Optional[WebhookEvent]:
        """Persist a signed event due immediately. Returns None when there is no URL to call."""
        if not url:
            logger.warning("[WEBHOOK] No callback URL for partner %s, %s not queued", partner_id, event_type)
            return None

        now = self.clock()
        body = canonical_json(payload)
        event = WebhookEvent(
            id=new_id("evt"),
            partner_id=partner_id,
            event_type=event_type,
            session_id=session_id,
            transaction_id=transaction_id,
            webhook_url=url,
            payload=body,
            signature=sign(body, secret),
            status="pending",
            attempts=0,
            max_attempts=self.settings.WEBHOOK_MAX_ATTEMPTS,
            next_retry_at=now,
            created_at=now,
            updated_at=now,
        )
        event = self.storage.add(event)
        logger.info("[WEBHOOK] Queued %s %s -> %s", event.id, event_type, url)
        return event

    def backoff(self, attempts: int) -> timedelta:
        """base * 2^(attempts-1), capped at WEBHOOK_RETRY_MAX_SECONDS."""
        seconds = self.settings.WEBHOOK_RETRY_BASE_SECONDS * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.settings.WEBHOOK_RETRY_MAX_SECONDS))

    # ─── Delivery ──────────────────────────────────────────────────────

    def _post(self, event: WebhookEvent, now: datetime) -> int:
        headers = {
            "Content-Type": "application/json",
            "X-Signature": event.signature,
            "X-Timestamp": str(unix_seconds(now)),
            "X-Event": event.event_type,
        }
        body = event.payload.encode("utf-8")
        timeout = self.settings.WEBHOOK_TIMEOUT_SECONDS
        try:
            if self._client is not None:
                response = self._client.post(event.webhook_url, content=body, headers=headers, timeout=timeout)
            else:
                with httpx.Client(timeout=timeout) as client:
                    response = client.post(event.webhook_url, content=body, headers=headers)
        except httpx.TimeoutException:
            raise DeliveryError(f"Timed out after {timeout}s")
        except httpx.HTTPError as e:
            raise DeliveryError(f"Network error: {e}")
        except httpx.InvalidURL as e:
            raise DeliveryError(f"Invalid webhook URL: {e}") from e
        except Exception as e:
            logger.exception("[WEBHOOK] Unexpected error sending %s", event.id)
            raise DeliveryError(f"Delivery error: {e}") from e

        if not 200 <= response.status_code < 300:
            raise DeliveryError(f"Partner responded with HTTP {response.status_code}", response.status_code)
        return response.status_code

    def deliver(self, event: WebhookEvent) -> WebhookEvent:
        """Make one delivery attempt. Returns the event as it stands afterwards."""
        if event.status not in DELIVERABLE_STATUSES:
            logger.debug("[WEBHOOK] %s is %s, nothing to send", event.id, event.status)
            return event
        now = self.clock()
        lease_until = now + timedelta(seconds=self.settings.WEBHOOK_LEASE_SECONDS)
        claimed = self.storage.claim_webhook_event(event, now, lease_until)
        if claimed is None:
            logger.debug("[WEBHOOK] %s already claimed elsewhere", event.id)
            return self.storage.get_webhook_event(event.id)

        try:
            status_code = self._post(claimed, now)
        except DeliveryError as e:
            return self._record_failure(claimed, e)

        delivered = self.storage.update_webhook_event(
            claimed.id,
            {
                "status": "delivered",
                "delivered_at": self.clock(),
                "last_status_code": status_code,
                "error_message": None,
                "next_retry_at": None,
            },
            expected={"attempts": claimed.attempts},
        )
        logger.info("[WEBHOOK] %s delivered on attempt %d", claimed.id, claimed.attempts)
        return delivered or self.storage.get_webhook_event(claimed.id)

    def _record_failure(self, event: WebhookEvent, error: DeliveryError) -> WebhookEvent:
        fields = {"last_status_code": error.status_code, "error_message": str(error)[:500]}
        if event.attempts >= event.max_attempts:
            fields.update(status="failed", next_retry_at=None)
            logger.error("[WEBHOOK] %s failed permanently after %d attempts: %s",
                         event.id, event.attempts, error)
        else:
            fields.update(status="retrying", next_retry_at=self.clock() + self.backoff(event.attempts))
            logger.warning("[WEBHOOK] %s attempt %d failed (%s), retry at %s",
                           event.id, event.attempts, error, fields["next_retry_at"])
        updated = self.storage.update_webhook_event(event.id, fields, expected={"attempts": event.attempts})
        return updated or self.storage.get_webhook_event(event.id)

    def process_due(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> dict:
        """Deliver every event whose `next_retry_at` has passed."""
        now = now or self.clock()
        events = self.storage.due_webhook_events(now, limit or self.settings.WEBHOOK_SWEEP_BATCH_SIZE)
        counts = {"processed": 0, "delivered": 0, "retrying": 0, "failed": 0}
        for event in events:
            result = self.deliver(event)
            counts["processed"] += 1
            if result is not None and result.status in counts:
                counts[result.status] += 1
        if events:
            logger.info("[WEBHOOK] Sweep: %s", counts)
        return counts

    # ─── Manual follow-up ──────────────────────────────────────────────

    def retry(self, event_id: str) -> WebhookEvent:
        """Re-queue a permanently failed event with a fresh attempt budget."""
        event = self.storage.get_webhook_event(event_id)
        if not event:
            raise NotFoundError("Webhook event not found")
        if event.status != "failed":
            raise StateConflictError(
                f"Only failed events can be re-queued (event is {event.status})",
                code="invalid_transition",
            )
        requeued = self.storage.update_webhook_event(
            event.id,
            {"status": "pending", "attempts": 0, "next_retry_at": self.clock(), "error_message": None},
            expected={"status": "failed"},
        )
        if not requeued:
            raise StateConflictError("Webhook event changed concurrently", code="invalid_transition")
        logger.info("[WEBHOOK] %s re-queued manually", event.id)
        return requeued
