import json
from decimal import Decimal

import pytest

from offramp.errors import NotFoundError, ProviderUnavailable, StateConflictError, ValidationError
from offramp.services.compliance_service import ComplianceService
from offramp.services.transaction_service import PayoutRail, TransactionService
from offramp.utils.signing import verify

NET_INR = Decimal("8212.2551")


@pytest.fixture
def quote(quotes, session):
    return quotes.create_quote(session, "100", "USDC", "polygon")


@pytest.fixture
def txn(transactions, partner, session, quote, completed_kyc):
    return transactions.create_transaction(partner, session.id, quote.id, completed_kyc.id, "USDC", "polygon")


class RefusingRail(PayoutRail):
    def send(self, transaction, channel, destination, amount):
        raise ProviderUnavailable("Payout rail is down", provider="rail")


class CrashingRail(PayoutRail):
    def send(self, transaction, channel, destination, amount):
        raise RuntimeError("rail client bug")


def test_full_flow_settles_and_notifies(transactions, dispatcher, receiver, storage, partner, session, txn):
    assert txn.status == "pending_deposit"
    assert Decimal(txn.expected_amount) == Decimal("100")
    assert txn.deposit_address.startswith("0x")

    txn = transactions.record_deposit(txn.id, "100", "0xabc123")
    assert txn.status == "deposit_confirmed"
    assert txn.deposit_confirmed_at is not None

    txn = transactions.initiate_payout(txn.id, "upi", "rahul@okaxis")
    assert txn.status == "completed"
    assert Decimal(txn.payout_amount) == NET_INR
    assert txn.payout_tx_hash.startswith("N") and len(txn.payout_tx_hash) == 17
    assert storage.get_session(session.id).status == "completed"

    counts = dispatcher.process_due()
    assert counts == {"processed": 2, "delivered": 2, "retrying": 0, "failed": 0}

    bodies = {body["event"]: body for body in (json.loads(request.content) for request in receiver.requests)}
    assert set(bodies) == {"deposit.detected", "payout.settled"}
    assert bodies["deposit.detected"]["amount"] == "100.00"
    assert bodies["payout.settled"]["amount"] == "8212.2551"
    assert bodies["payout.settled"]["utr"] == txn.payout_tx_hash
    for request in receiver.requests:
        assert str(request.url) == "https://partner.example/hooks/offramp"
        assert verify(request.content, request.headers["X-Signature"], partner.webhook_secret)

    chain = ComplianceService.verify_chain(storage, session.id)
    assert chain["valid"]
    actions = [entry.action for entry in ComplianceService.get_trail(storage, session.id)]
    assert actions[-3:] == ["TRANSACTION_CREATED", "DEPOSIT_CONFIRMED", "PAYOUT_SETTLED"]


def test_session_callback_url_overrides_partner_webhook(transactions, partners, partner, quotes, kycs, storage):
    session = partners.create_session(partner, callback_url="https://partner.example/sessions/42")
    quote = quotes.create_quote(session, "10", "USDT", "solana")
    kyc = kycs.create_kyc_session(session, partner, "user-2", "aadhaar", "234567890123")
    kycs.generate_aadhaar_otp(kyc.id, "234567890123")
    kycs.verify_aadhaar(kyc.id, "234567890123", "123456")
    kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar")

    txn = transactions.create_transaction(partner, session.id, quote.id, kyc.id, "usdt", "SOLANA")
    transactions.record_deposit(txn.id, "10", "5sig")

    [event] = storage.list_webhook_events()
    assert event.webhook_url == "https://partner.example/sessions/42"


def test_webhook_urls_must_be_absolute_http(partners, partner):
    with pytest.raises(ValidationError) as exc:
        partners.create_partner("Bad Hooks", "ops@bad.example", "ftp://partner.example/hook")
    assert exc.value.details == {"field": "webhookUrl"}

    with pytest.raises(ValidationError) as exc:
        partners.create_session(partner, callback_url="http://[::1/hook")
    assert exc.value.details == {"field": "callbackUrl"}


def test_quote_older_than_fifteen_minutes_is_rejected(transactions, partner, session, quote, completed_kyc, clock):
    clock.advance(minutes=16)
    with pytest.raises(StateConflictError) as exc:
        transactions.create_transaction(partner, session.id, quote.id, completed_kyc.id, "USDC", "polygon")
    assert exc.value.code == "quote_expired"


def test_quote_is_single_use(transactions, partner, session, quote, completed_kyc, txn):
    with pytest.raises(StateConflictError) as exc:
        transactions.create_transaction(partner, session.id, quote.id, completed_kyc.id, "USDC", "polygon")
    assert exc.value.code == "quote_used"


def test_incomplete_kyc_is_rejected_and_quote_stays_active(transactions, kycs, quotes, partner, session, quote):
    kyc = kycs.create_kyc_session(session, partner, "user-3", "pan", "ABCPK1234F")
    kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar")

    with pytest.raises(StateConflictError) as exc:
        transactions.create_transaction(partner, session.id, quote.id, kyc.id, "USDC", "polygon")
    assert exc.value.code == "kyc_incomplete"
    assert quotes.get_quote(quote.id).status == "active"


def test_inactive_session_is_rejected(transactions, partner, session, quote, completed_kyc, clock):
    clock.advance(minutes=31)
    with pytest.raises(StateConflictError) as exc:
        transactions.create_transaction(partner, session.id, quote.id, completed_kyc.id, "USDC", "polygon")
    assert exc.value.code == "session_inactive"


def test_asset_must_match_quote(transactions, partner, session, quote, completed_kyc):
    with pytest.raises(ValidationError):
        transactions.create_transaction(partner, session.id, quote.id, completed_kyc.id, "USDT", "polygon")
    with pytest.raises(ValidationError):
        transactions.create_transaction(partner, session.id, quote.id, completed_kyc.id, "USDC", "ethereum")


def test_quote_from_another_session_is_not_found(transactions, partners, partner, quotes, session, completed_kyc):
    other_session = partners.create_session(partner)
    foreign_quote = quotes.create_quote(other_session, "100", "USDC", "polygon")
    with pytest.raises(NotFoundError):
        transactions.create_transaction(partner, session.id, foreign_quote.id, completed_kyc.id, "USDC", "polygon")


def test_payout_before_deposit_is_a_conflict(transactions, txn):
    with pytest.raises(StateConflictError) as exc:
        transactions.initiate_payout(txn.id, "upi", "rahul@okaxis")
    assert exc.value.code == "invalid_transition"
    assert transactions.get_transaction(txn.id).status == "pending_deposit"


def test_deposit_replay_is_idempotent(transactions, storage, txn):
    first = transactions.record_deposit(txn.id, "100", "0xabc123")
    again = transactions.record_deposit(txn.id, "100", "0xabc123")
    assert again.status == first.status == "deposit_confirmed"
    assert len(storage.list_webhook_events()) == 1

    with pytest.raises(StateConflictError):
        transactions.record_deposit(txn.id, "100", "0xdifferent")


def test_deposit_within_tolerance_is_accepted(transactions, txn):
    assert transactions.record_deposit(txn.id, "99.6", "0xabc").status == "deposit_confirmed"


def test_mismatched_deposit_fails_the_transaction(transactions, storage, txn):
    with pytest.raises(StateConflictError) as exc:
        transactions.record_deposit(txn.id, "90", "0xshort")
    assert exc.value.code == "mismatched_amount"

    failed = transactions.get_transaction(txn.id)
    assert failed.status == "failed"
    assert failed.failure_reason == "mismatched_amount"
    assert storage.list_webhook_events() == []


def test_payout_cannot_exceed_net_inr(transactions, txn):
    transactions.record_deposit(txn.id, "100", "0xabc")
    with pytest.raises(ValidationError):
        transactions.initiate_payout(txn.id, "bank", "HDFC0001234-123456789012", amount="8212.26")
    with pytest.raises(ValidationError):
        transactions.initiate_payout(txn.id, "upi", "not-a-vpa")
    assert transactions.get_transaction(txn.id).status == "deposit_confirmed"

    partial = transactions.initiate_payout(txn.id, "imps", "HDFC0001234-123456789012", amount="5000")
    assert Decimal(partial.payout_amount) == Decimal("5000")


def test_refused_payout_fails_the_transaction(storage, dispatcher, settings, clock, txn):
    service = TransactionService(storage, dispatcher, RefusingRail(), settings, clock)
    service.record_deposit(txn.id, "100", "0xabc")

    with pytest.raises(ProviderUnavailable):
        service.initiate_payout(txn.id, "upi", "rahul@okaxis")

    failed = service.get_transaction(txn.id)
    assert failed.status == "failed"
    assert failed.failure_reason == "payout_failed"
    assert [e.event_type for e in storage.list_webhook_events()] == ["deposit.detected"]


def test_unexpected_rail_error_still_fails_the_transaction(storage, dispatcher, settings, clock, txn):
    service = TransactionService(storage, dispatcher, CrashingRail(), settings, clock)
    service.record_deposit(txn.id, "100", "0xabc")

    with pytest.raises(RuntimeError):
        service.initiate_payout(txn.id, "upi", "rahul@okaxis")

    failed = service.get_transaction(txn.id)
    assert failed.status == "failed"
    assert failed.failure_reason == "payout_failed"
    assert storage.compliance_trail(txn.session_id)[-1].action == "PAYOUT_FAILED"


def test_unfunded_transaction_expires_lazily(transactions, clock, txn):
    clock.advance(minutes=15, seconds=1)
    assert transactions.get_transaction(txn.id).status == "expired"
    with pytest.raises(StateConflictError):
        transactions.record_deposit(txn.id, "100", "0xlate")


def test_cancel(transactions, storage, txn):
    cancelled = transactions.cancel_transaction(txn.id, "user abandoned")
    assert cancelled.status == "failed"
    assert cancelled.failure_reason == "user abandoned"
    assert ComplianceService.get_trail(storage, txn.session_id)[-1].action == "TRANSACTION_CANCELLED"

    with pytest.raises(StateConflictError):
        transactions.cancel_transaction(txn.id)


def test_transactions_are_scoped_to_their_partner(transactions, partners, txn):
    other = partners.create_partner("Other Pay", "ops@other.example")
    with pytest.raises(NotFoundError):
        transactions.get_transaction(txn.id, partner=other)
