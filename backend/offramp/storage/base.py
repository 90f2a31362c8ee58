"""
Storage Interface — the single persistence contract used by every service.

Backends implement a handful of primitives (`add`, `get`, `find`, `update`,
plus two queue/log queries); the entity-level operations below are written
once on top of them. `update` only writes the fields it is given and can be
made conditional on the current values of other fields, which is how status
transitions are guarded against concurrent double-transition.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional, Sequence

from offramp.models import (
    Partner, OffRampSession, Quote, KYCSession, VerificationAttempt,
    Transaction, WebhookEvent, ComplianceLog,
)
from offramp.utils.timeutils import utcnow


class Storage(ABC):
    """Persistence contract. Implementations must be safe for concurrent requests."""

    # ─── Primitives ────────────────────────────────────────────────────

    @abstractmethod
    def add(self, obj):
        """Persist a new entity and return it with defaults populated."""

    @abstractmethod
    def get(self, model, key):
        """Fetch by primary key, or None."""

    @abstractmethod
    def find(self, model, order_by: Optional[str] = None, descending: bool = False,
             limit: Optional[int] = None, **filters) -> list:
        """Equality-filtered listing."""

    @abstractmethod
    def update(self, model, key, fields: dict, expected: Optional[dict] = None):
        """Write only `fields`; when `expected` is given, only if every expected
        column still holds that value. Returns the fresh entity, or None when the
        row is missing or a precondition no longer holds."""

    @abstractmethod
    def due_webhook_events(self, now: datetime, limit: int) -> list:
        """Pending/retrying events whose next_retry_at is at or before `now`."""

    # ─── Partners ──────────────────────────────────────────────────────

    def get_partner(self, partner_id: str) -> Optional[Partner]:
        return self.get(Partner, partner_id)

    def get_partner_by_api_key(self, api_key: str) -> Optional[Partner]:
        found = self.find(Partner, api_key=api_key, limit=1)
        return found[0] if found else None

    # ─── Sessions ──────────────────────────────────────────────────────

    def get_session(self, session_id: str) -> Optional[OffRampSession]:
        return self.get(OffRampSession, session_id)

    def get_session_by_token(self, token: str) -> Optional[OffRampSession]:
        found = self.find(OffRampSession, token=token, limit=1)
        return found[0] if found else None

    def transition_session(self, session_id: str, expected_status: str, status: str) -> Optional[OffRampSession]:
        return self.update(OffRampSession, session_id, self._stamp(OffRampSession, {"status": status}),
                           expected={"status": expected_status})

    # ─── Quotes ────────────────────────────────────────────────────────

    def get_quote(self, quote_id: str) -> Optional[Quote]:
        return self.get(Quote, quote_id)

    def transition_quote(self, quote_id: str, expected_status: str, status: str) -> Optional[Quote]:
        # Financial columns are never passed here; a quote only ever changes status.
        return self.update(Quote, quote_id, self._stamp(Quote, {"status": status}),
                           expected={"status": expected_status})

    # ─── KYC ───────────────────────────────────────────────────────────

    def get_kyc_session(self, kyc_session_id: str) -> Optional[KYCSession]:
        return self.get(KYCSession, kyc_session_id)

    def update_kyc_session(self, kyc_session_id: str, fields: dict,
                           expected: Optional[dict] = None) -> Optional[KYCSession]:
        return self.update(KYCSession, kyc_session_id, self._stamp(KYCSession, fields), expected=expected)

    def add_verification_attempt(self, attempt: VerificationAttempt) -> VerificationAttempt:
        return self.add(attempt)

    def verification_attempts(self, kyc_session_id: str, method: Optional[str] = None) -> list:
        filters: dict[str, Any] = {"kyc_session_id": kyc_session_id}
        if method:
            filters["method"] = method
        return self.find(VerificationAttempt, order_by="id", **filters)

    # ─── Transactions ──────────────────────────────────────────────────

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self.get(Transaction, transaction_id)

    def transition_transaction(self, transaction_id: str, expected_status: str,
                               fields: dict) -> Optional[Transaction]:
        return self.update(Transaction, transaction_id, self._stamp(Transaction, fields),
                           expected={"status": expected_status})

    # ─── Webhooks ──────────────────────────────────────────────────────

    def get_webhook_event(self, event_id: str) -> Optional[WebhookEvent]:
        return self.get(WebhookEvent, event_id)

    def update_webhook_event(self, event_id: str, fields: dict,
                             expected: Optional[dict] = None) -> Optional[WebhookEvent]:
        return self.update(WebhookEvent, event_id, self._stamp(WebhookEvent, fields), expected=expected)

    def claim_webhook_event(self, event: WebhookEvent, now: datetime,
                            lease_until: datetime) -> Optional[WebhookEvent]:
        """Take the next delivery attempt. Fails if another worker already took it."""
        if event.status not in ("pending", "retrying"):
            return None
        return self.update_webhook_event(
            event.id,
            {"attempts": (event.attempts or 0) + 1, "last_attempt": now, "next_retry_at": lease_until},
            expected={"attempts": event.attempts or 0, "status": event.status},
        )

    def list_webhook_events(self, status: Optional[str] = None, limit: int = 100) -> list:
        filters = {"status": status} if status else {}
        return self.find(WebhookEvent, order_by="created_at", descending=True, limit=limit, **filters)

    # ─── Compliance ────────────────────────────────────────────────────

    def last_compliance_log(self, session_id: str) -> Optional[ComplianceLog]:
        found = self.find(ComplianceLog, order_by="id", descending=True, limit=1, session_id=session_id)
        return found[0] if found else None

    def compliance_trail(self, session_id: str) -> Sequence[ComplianceLog]:
        return self.find(ComplianceLog, order_by="id", session_id=session_id)

    # ─── Lifecycle ─────────────────────────────────────────────────────

    def close(self) -> None:
        """Release backend resources held by this handle."""

    @staticmethod
    def _stamp(model, fields: dict) -> dict:
        if hasattr(model, "updated_at") and "updated_at" not in fields:
            fields = {**fields, "updated_at": utcnow()}
        return fields
