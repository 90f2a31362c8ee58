"""
Partner & Session Service — API-key authentication and off-ramp sessions.

Sessions are short-lived (SESSION_EXPIRY_MINUTES) and gate every quote,
KYC and transaction call. Expiry is applied lazily on read.
"""
import logging
import secrets
from datetime import timedelta
from typing import Callable, Optional

from offramp.config import Settings, get_settings
from offramp.errors import AuthError, NotFoundError, StateConflictError, ValidationError
from offramp.models import Partner, OffRampSession
from offramp.storage.base import Storage
from offramp.utils.ids import new_id, new_token
from offramp.utils.logger import mask
from offramp.utils.timeutils import utcnow
from offramp.utils.validators import validate_http_url

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "pk_live_"
WEBHOOK_SECRET_PREFIX = "whsec_"
KYC_METHODS = ("aadhaar", "pan", "face", "upi", "bank", "document", "name_match")


class PartnerService:
    def __init__(self, storage: Storage, settings: Optional[Settings] = None,
                 clock: Callable = utcnow):
        self.storage = storage
        self.settings = settings or get_settings()
        self.clock = clock

    @staticmethod
    def _checked_url(url: Optional[str], field: str) -> Optional[str]:
        if url is None or not url.strip():
            return None
        if not validate_http_url(url):
            raise ValidationError(f"{field} must be an absolute http(s) URL", details={"field": field})
        return url.strip()

    # ─── Partners ──────────────────────────────────────────────────────

    def create_partner(self, name: str, email: str, webhook_url: Optional[str] = None,
                       required_kyc_methods: Optional[list[str]] = None) -> Partner:
        """Provision a partner with a fresh API key and webhook secret."""
        if not name or not name.strip():
            raise ValidationError("name is required", details={"field": "name"})
        if not email or "@" not in email:
            raise ValidationError("a valid email is required", details={"field": "email"})
        webhook_url = self._checked_url(webhook_url, "webhookUrl")
        if required_kyc_methods is not None:
            unknown = sorted(set(required_kyc_methods) - set(KYC_METHODS))
            if unknown:
                raise ValidationError(
                    f"Unknown KYC methods: {', '.join(unknown)}",
                    details={"allowed": list(KYC_METHODS)},
                )

        partner = Partner(
            id=new_id("partner", 12),
            name=name.strip(),
            email=email.strip(),
            api_key=API_KEY_PREFIX + secrets.token_hex(24),
            webhook_url=webhook_url,
            webhook_secret=WEBHOOK_SECRET_PREFIX + secrets.token_hex(24),
            status="active",
            required_kyc_methods=required_kyc_methods,
        )
        partner = self.storage.add(partner)
        logger.info("[PARTNER] Created %s (%s)", partner.id, partner.name)
        return partner

    def authenticate(self, api_key: Optional[str]) -> Partner:
        """Resolve an active partner from its API key."""
        if not api_key:
            raise AuthError("Missing or invalid authorization header")
        partner = self.storage.get_partner_by_api_key(api_key)
        if not partner or partner.status != "active":
            logger.warning("[AUTH] Rejected API key %s", mask(api_key))
            raise AuthError("Invalid or inactive API key")
        return partner

    # ─── Sessions ──────────────────────────────────────────────────────

    def create_session(self, partner: Partner, callback_url: Optional[str] = None,
                       metadata: Optional[dict] = None) -> OffRampSession:
        callback_url = self._checked_url(callback_url, "callbackUrl")
        now = self.clock()
        session = OffRampSession(
            id=new_id("sess"),
            partner_id=partner.id,
            token=new_token(),
            callback_url=callback_url,
            meta=metadata or {},
            status="active",
            expires_at=now + timedelta(minutes=self.settings.SESSION_EXPIRY_MINUTES),
            created_at=now,
            updated_at=now,
        )
        session = self.storage.add(session)
        logger.info("[SESSION] Created %s for partner %s", session.id, partner.id)
        return session

    def _apply_expiry(self, session: OffRampSession) -> OffRampSession:
        if session.status == "active" and session.expires_at <= self.clock():
            expired = self.storage.transition_session(session.id, "active", "expired")
            # Lost race: someone else moved it first; re-read
            return expired or self.storage.get_session(session.id)
        return session

    def get_session(self, session_id: str, partner: Optional[Partner] = None) -> OffRampSession:
        session = self.storage.get_session(session_id) if session_id else None
        if not session or (partner is not None and session.partner_id != partner.id):
            raise NotFoundError("Session not found")
        return self._apply_expiry(session)

    def require_active_session(self, session_id: str, partner: Optional[Partner] = None) -> OffRampSession:
        session = self.get_session(session_id, partner)
        if session.status != "active":
            raise StateConflictError(
                f"Session is {session.status}",
                code="session_inactive",
                details={"sessionId": session.id, "status": session.status},
            )
        return session

    def get_session_by_token(self, token: Optional[str]) -> OffRampSession:
        session = self.storage.get_session_by_token(token) if token else None
        if not session:
            raise AuthError("Invalid session token")
        session = self._apply_expiry(session)
        if session.status == "expired":
            raise AuthError("Session token has expired", code="session_expired")
        return session

    def complete_session(self, session_id: str) -> Optional[OffRampSession]:
        return self.storage.transition_session(session_id, "active", "completed")
