"""
Transaction Service — deposit → payout pipeline for a quoted conversion.

    pending_deposit → deposit_confirmed → processing → completed
    pending_deposit → expired                      (lazily, past expires_at)
    any non-terminal → failed                      (mismatch, payout failure, cancel)

Every status change is a compare-and-swap on the current status, so two
concurrent requests can never both move the same transaction.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from offramp.config import Settings, get_settings
from offramp.errors import NotFoundError, ProviderError, StateConflictError, ValidationError
from offramp.models import Transaction, Partner
from offramp.services.compliance_service import ComplianceService
from offramp.services.fee_calculator import to_decimal, format_money
from offramp.services.partner_service import PartnerService
from offramp.services.quote_service import normalize_asset, normalize_network
from offramp.services.webhook_dispatcher import WebhookDispatcher, DEPOSIT_DETECTED, PAYOUT_SETTLED
from offramp.storage.base import Storage
from offramp.utils.ids import new_id, new_utr
from offramp.utils.logger import mask
from offramp.utils.timeutils import utcnow
from offramp.utils.validators import PAYOUT_CHANNELS, validate_upi_vpa

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending_deposit": {"deposit_confirmed", "expired", "failed"},
    "deposit_confirmed": {"processing", "failed"},
    "processing": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
    "expired": set(),
}
TERMINAL_STATUSES = {status for status, targets in TRANSITIONS.items() if not targets}


@dataclass(frozen=True)
class PayoutReceipt:
    payout_id: str
    utr: str


class PayoutRail(ABC):
    """INR settlement rail. Raises a ProviderError subclass when the payout is refused."""

    @abstractmethod
    def send(self, transaction: Transaction, channel: str, destination: str, amount: Decimal) -> PayoutReceipt:
        raise NotImplementedError


class SimulatedPayoutRail(PayoutRail):
    """Settles instantly with a generated payout id and UTR."""

    def send(self, transaction, channel, destination, amount):
        receipt = PayoutReceipt(payout_id=new_id("payout"), utr=new_utr())
        logger.info("[PAYOUT] Simulated %s INR %s via %s to %s (utr %s)",
                    transaction.id, amount, channel, mask(destination), receipt.utr)
        return receipt


class TransactionService:
    def __init__(self, storage: Storage, dispatcher: WebhookDispatcher, payout_rail: PayoutRail,
                 settings: Optional[Settings] = None, clock: Callable = utcnow):
        self.storage = storage
        self.dispatcher = dispatcher
        self.payout_rail = payout_rail
        self.settings = settings or get_settings()
        self.clock = clock
        self.sessions = PartnerService(storage, self.settings, clock)

    # ─── Creation ──────────────────────────────────────────────────────

    def create_transaction(self, partner: Partner, session_id: str, quote_id: str, kyc_session_id: str,
                           asset: str, network: str) -> Transaction:
        session = self.sessions.require_active_session(session_id, partner)

        quote = self.storage.get_quote(quote_id) if quote_id else None
        if not quote or quote.session_id != session.id:
            raise NotFoundError("Quote not found for this session")

        kyc = self.storage.get_kyc_session(kyc_session_id) if kyc_session_id else None
        if not kyc or kyc.partner_id != partner.id:
            raise NotFoundError("KYC session not found")
        if kyc.session_id != session.id:
            raise ValidationError("KYC session belongs to a different session",
                                  details={"field": "kycSessionId"})

        if normalize_asset(asset) != quote.asset or normalize_network(network) != quote.network:
            raise ValidationError(
                "asset and network must match the quote",
                details={"quote": {"asset": quote.asset, "network": quote.network}},
            )

        now = self.clock()
        if quote.status == "active" and quote.expires_at <= now:
            quote = self.storage.transition_quote(quote.id, "active", "expired") or self.storage.get_quote(quote.id)
        self._check_quote_usable(quote.status)

        if kyc.status != "completed":
            raise StateConflictError(
                "KYC must be completed before creating a transaction",
                code="kyc_incomplete",
                details={"kycStatus": kyc.status, "requiredMethods": kyc.required_methods},
            )

        # The quote can be consumed exactly once
        used = self.storage.transition_quote(quote.id, "active", "used")
        if used is None:
            self._check_quote_usable(self.storage.get_quote(quote.id).status)
            raise StateConflictError("Quote changed concurrently", code="quote_used")

        txn = Transaction(
            id=new_id("txn"),
            session_id=session.id,
            quote_id=quote.id,
            kyc_session_id=kyc.id,
            partner_id=partner.id,
            user_id=kyc.user_id,
            asset=quote.asset,
            network=quote.network,
            status="pending_deposit",
            deposit_address=quote.deposit_address,
            expected_amount=quote.amount_usd,
            expires_at=quote.expires_at,
            created_at=now,
            updated_at=now,
        )
        txn = self.storage.add(txn)

        ComplianceService.log(
            self.storage, session.id, "TRANSACTION_CREATED",
            payload={"transactionId": txn.id, "quoteId": quote.id, "kycSessionId": kyc.id,
                     "expectedAmount": str(quote.amount_usd), "asset": quote.asset},
            partner_id=partner.id,
        )
        logger.info("[TXN] %s created: %s %s on %s", txn.id, quote.amount_usd, quote.asset, quote.network)
        return txn

    @staticmethod
    def _check_quote_usable(status: str) -> None:
        if status == "expired":
            raise StateConflictError("Quote has expired; request a new quote", code="quote_expired")
        if status == "used":
            raise StateConflictError("Quote has already been used", code="quote_used")

    # ─── Reads ─────────────────────────────────────────────────────────

    def get_transaction(self, transaction_id: str, partner: Optional[Partner] = None) -> Transaction:
        txn = self.storage.get_transaction(transaction_id) if transaction_id else None
        if not txn or (partner is not None and txn.partner_id != partner.id):
            raise NotFoundError("Transaction not found")
        if txn.status == "pending_deposit" and txn.expires_at <= self.clock():
            expired = self.storage.transition_transaction(txn.id, "pending_deposit", {"status": "expired"})
            if expired:
                logger.info("[TXN] %s expired awaiting deposit", txn.id)
            txn = expired or self.storage.get_transaction(txn.id)
        return txn

    # ─── Transitions ───────────────────────────────────────────────────

    def _transition(self, txn: Transaction, status: str, fields: Optional[dict] = None) -> Transaction:
        if status not in TRANSITIONS[txn.status]:
            raise StateConflictError(
                f"Cannot move transaction from {txn.status} to {status}",
                code="invalid_transition",
                details={"transactionId": txn.id, "status": txn.status},
            )
        moved = self.storage.transition_transaction(txn.id, txn.status, {**(fields or {}), "status": status})
        if moved is None:
            current = self.storage.get_transaction(txn.id)
            raise StateConflictError(
                "Transaction changed concurrently",
                code="invalid_transition",
                details={"transactionId": txn.id, "status": current.status if current else None},
            )
        return moved

    def _notify(self, txn: Transaction, event_type: str, payload: dict):
        partner = self.storage.get_partner(txn.partner_id)
        session = self.storage.get_session(txn.session_id)
        url = (session.callback_url if session else None) or (partner.webhook_url if partner else None)
        body = {
            "event": event_type,
            "sessionId": txn.session_id,
            "transactionId": txn.id,
            "timestamp": self.clock().isoformat() + "Z",
            **payload,
        }
        return self.dispatcher.enqueue(
            txn.partner_id, event_type, url, body, partner.webhook_secret if partner else "",
            session_id=txn.session_id, transaction_id=txn.id,
        )

    def record_deposit(self, transaction_id: str, amount, tx_hash: str,
                       partner: Optional[Partner] = None) -> Transaction:
        """Confirm the on-chain deposit for a pending transaction."""
        amount = to_decimal(amount, "amount")
        if amount <= 0:
            raise ValidationError("amount must be greater than zero", details={"field": "amount"})
        if not tx_hash or not tx_hash.strip():
            raise ValidationError("txHash is required", details={"field": "txHash"})
        tx_hash = tx_hash.strip()

        txn = self.get_transaction(transaction_id, partner)
        if txn.status == "deposit_confirmed" and txn.deposit_tx_hash == tx_hash:
            logger.info("[TXN] %s deposit %s replayed, ignoring", txn.id, tx_hash)
            return txn
        if txn.status != "pending_deposit":
            raise StateConflictError(
                f"Deposit cannot be recorded on a {txn.status} transaction",
                code="invalid_transition",
                details={"transactionId": txn.id, "status": txn.status},
            )

        expected = Decimal(txn.expected_amount)
        tolerance = expected * to_decimal(self.settings.DEPOSIT_TOLERANCE_PCT) / 100
        if abs(amount - expected) > tolerance:
            self._transition(txn, "failed", {
                "failure_reason": "mismatched_amount",
                "deposited_amount": amount,
                "deposit_tx_hash": tx_hash,
            })
            ComplianceService.log(
                self.storage, txn.session_id, "DEPOSIT_MISMATCH",
                payload={"transactionId": txn.id, "expected": str(expected), "received": str(amount),
                         "txHash": tx_hash},
                partner_id=txn.partner_id,
            )
            logger.warning("[TXN] %s deposit mismatch: expected %s, received %s", txn.id, expected, amount)
            raise StateConflictError(
                "Deposited amount does not match the quoted amount",
                code="mismatched_amount",
                details={"expectedAmount": format_money(expected), "receivedAmount": format_money(amount)},
            )

        try:
            txn = self._transition(txn, "deposit_confirmed", {
                "deposited_amount": amount,
                "deposit_tx_hash": tx_hash,
                "deposit_confirmed_at": self.clock(),
            })
        except StateConflictError:
            current = self.storage.get_transaction(txn.id)
            if current and current.status == "deposit_confirmed" and current.deposit_tx_hash == tx_hash:
                return current
            raise

        ComplianceService.log(
            self.storage, txn.session_id, "DEPOSIT_CONFIRMED",
            payload={"transactionId": txn.id, "amount": str(amount), "txHash": tx_hash},
            partner_id=txn.partner_id,
        )
        self._notify(txn, DEPOSIT_DETECTED, {
            "quoteId": txn.quote_id,
            "asset": txn.asset,
            "network": txn.network,
            "amount": format_money(amount),
            "txHash": tx_hash,
            "status": txn.status,
        })
        logger.info("[TXN] %s deposit confirmed: %s %s (%s)", txn.id, amount, txn.asset, tx_hash)
        return txn

    def initiate_payout(self, transaction_id: str, channel: str, destination: str, amount=None,
                        partner: Optional[Partner] = None) -> Transaction:
        """Pay out INR for a confirmed deposit. Amount defaults to the quote's net INR."""
        channel = (channel or "").strip().lower()
        if channel not in PAYOUT_CHANNELS:
            raise ValidationError(
                f"Unsupported payout channel '{channel}'",
                details={"field": "channel", "allowed": list(PAYOUT_CHANNELS)},
            )
        destination = (destination or "").strip()
        if not destination:
            raise ValidationError("destination is required", details={"field": "destination"})
        if channel == "upi" and not validate_upi_vpa(destination):
            raise ValidationError("destination must be a UPI VPA for upi payouts", details={"field": "destination"})

        txn = self.get_transaction(transaction_id, partner)
        if txn.status != "deposit_confirmed":
            raise StateConflictError(
                f"Payout requires a confirmed deposit (transaction is {txn.status})",
                code="invalid_transition",
                details={"transactionId": txn.id, "status": txn.status},
            )

        net_inr = Decimal(self.storage.get_quote(txn.quote_id).estimated_inr)
        payout_amount = net_inr if amount is None else to_decimal(amount, "amount")
        if payout_amount <= 0 or payout_amount > net_inr:
            raise ValidationError(
                "amount must be positive and not above the quoted net INR",
                details={"field": "amount", "maxAmount": format_money(net_inr)},
            )

        txn = self._transition(txn, "processing", {
            "payout_amount": payout_amount,
            "payout_channel": channel,
            "payout_destination": destination,
            "payout_initiated_at": self.clock(),
        })

        try:
            receipt = self.payout_rail.send(txn, channel, destination, payout_amount)
        except Exception as e:
            self._transition(txn, "failed", {"failure_reason": "payout_failed"})
            code = e.code if isinstance(e, ProviderError) else type(e).__name__
            ComplianceService.log(
                self.storage, txn.session_id, "PAYOUT_FAILED",
                payload={"transactionId": txn.id, "channel": channel, "error": code},
                partner_id=txn.partner_id,
            )
            logger.error("[TXN] %s payout failed: %s", txn.id, e)
            raise

        txn = self._transition(txn, "completed", {
            "payout_id": receipt.payout_id,
            "payout_tx_hash": receipt.utr,
            "completed_at": self.clock(),
        })
        self.sessions.complete_session(txn.session_id)

        ComplianceService.log(
            self.storage, txn.session_id, "PAYOUT_SETTLED",
            payload={"transactionId": txn.id, "payoutId": receipt.payout_id, "utr": receipt.utr,
                     "amount": str(payout_amount), "channel": channel},
            partner_id=txn.partner_id,
        )
        self._notify(txn, PAYOUT_SETTLED, {
            "payoutId": receipt.payout_id,
            "utr": receipt.utr,
            "amount": format_money(payout_amount),
            "currency": "INR",
            "channel": channel,
            "status": txn.status,
        })
        logger.info("[TXN] %s settled: INR %s via %s (utr %s)", txn.id, payout_amount, channel, receipt.utr)
        return txn

    def cancel_transaction(self, transaction_id: str, reason: Optional[str] = None,
                           partner: Optional[Partner] = None) -> Transaction:
        txn = self.get_transaction(transaction_id, partner)
        if txn.status in TERMINAL_STATUSES:
            raise StateConflictError(
                f"Transaction is already {txn.status}",
                code="invalid_transition",
                details={"transactionId": txn.id, "status": txn.status},
            )
        reason = (reason or "cancelled").strip()[:64] or "cancelled"
        txn = self._transition(txn, "failed", {"failure_reason": reason})
        ComplianceService.log(
            self.storage, txn.session_id, "TRANSACTION_CANCELLED",
            payload={"transactionId": txn.id, "reason": reason},
            partner_id=txn.partner_id,
        )
        logger.info("[TXN] %s cancelled: %s", txn.id, reason)
        return txn
