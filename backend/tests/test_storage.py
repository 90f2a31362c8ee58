"""
Both storage backends must give the same answers: every test here runs
against MemoryStorage and SqlStorage through the `storage` fixture.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy import Column, Integer, MetaData, Table, create_engine, select

from offramp.models import WebhookEvent, ComplianceLog
from offramp.models.quote import MONEY


def make_event(storage, event_id, status="pending", attempts=0, next_retry_at=None):
    return storage.add(WebhookEvent(
        id=event_id,
        partner_id="partner_test",
        event_type="deposit.detected",
        webhook_url="https://partner.example/hook",
        payload='{"event":"deposit.detected"}',
        signature="0" * 64,
        status=status,
        attempts=attempts,
        next_retry_at=next_retry_at,
    ))


def test_add_populates_column_defaults(storage, partner):
    event = make_event(storage, "evt_defaults")
    assert event.max_attempts == 3
    assert event.created_at is not None
    assert partner.status == "active"


def test_update_writes_only_given_fields(storage, partner):
    updated = storage.update(type(partner), partner.id, {"webhook_url": "https://new.example/hook"})
    assert updated.webhook_url == "https://new.example/hook"
    assert updated.name == "Acme Pay"
    assert updated.api_key == partner.api_key


def test_conditional_update_rejects_stale_precondition(storage, session):
    assert storage.transition_session(session.id, "active", "completed").status == "completed"
    # A second writer still believing the session is active loses
    assert storage.transition_session(session.id, "active", "expired") is None
    assert storage.get_session(session.id).status == "completed"


def test_update_of_missing_row_returns_none(storage):
    assert storage.update_webhook_event("evt_missing", {"status": "failed"}) is None


def test_claim_cannot_be_taken_twice(storage):
    now = datetime(2026, 1, 15, 10, 0)
    event = make_event(storage, "evt_claim", next_retry_at=now)
    # Two workers that both read the event before either claimed it
    seen = SimpleNamespace(id=event.id, attempts=event.attempts, status=event.status)

    first = storage.claim_webhook_event(seen, now, now + timedelta(seconds=60))
    assert first is not None and first.attempts == 1
    assert storage.claim_webhook_event(seen, now, now + timedelta(seconds=60)) is None
    assert storage.get_webhook_event(event.id).attempts == 1


def test_settled_events_cannot_be_claimed(storage):
    now = datetime(2026, 1, 15, 10, 0)
    for status in ("delivered", "failed"):
        event = make_event(storage, f"evt_{status}", status=status, attempts=3)
        assert storage.claim_webhook_event(event, now, now + timedelta(seconds=60)) is None
        assert storage.get_webhook_event(event.id).attempts == 3


def test_due_events_are_filtered_and_ordered(storage):
    now = datetime(2026, 1, 15, 10, 0)
    make_event(storage, "evt_late", next_retry_at=now - timedelta(minutes=1))
    make_event(storage, "evt_early", status="retrying", next_retry_at=now - timedelta(minutes=5))
    make_event(storage, "evt_future", next_retry_at=now + timedelta(minutes=5))
    make_event(storage, "evt_done", status="delivered", next_retry_at=now - timedelta(minutes=9))

    due = storage.due_webhook_events(now, limit=10)
    assert [event.id for event in due] == ["evt_early", "evt_late"]
    assert [event.id for event in storage.due_webhook_events(now, limit=1)] == ["evt_early"]


def test_compliance_trail_is_oldest_first(storage):
    for action in ("FIRST", "SECOND", "THIRD"):
        storage.add(ComplianceLog(session_id="sess_trail", action=action, payload_hash=action.lower()))
    storage.add(ComplianceLog(session_id="sess_other", action="OTHER", payload_hash="x"))

    assert [entry.action for entry in storage.compliance_trail("sess_trail")] == ["FIRST", "SECOND", "THIRD"]
    assert storage.last_compliance_log("sess_trail").action == "THIRD"
    assert storage.last_compliance_log("sess_none") is None


def test_memory_reads_are_detached_snapshots():
    from offramp.storage import MemoryStorage
    from offramp.models import OffRampSession

    store = MemoryStorage()
    store.add(OffRampSession(id="sess_1", partner_id="p", token="t", expires_at=datetime(2026, 1, 1)))

    copy = store.get_session("sess_1")
    copy.status = "completed"
    copy.meta["tampered"] = True

    fresh = store.get_session("sess_1")
    assert fresh.status == "active"
    assert fresh.meta == {}


def test_money_keeps_every_digit_on_sqlite():
    engine = create_engine("sqlite://")
    metadata = MetaData()
    amounts = Table("amounts", metadata, Column("id", Integer, primary_key=True), Column("value", MONEY))
    metadata.create_all(engine)
    big = Decimal("123456789012.12345678")

    with engine.begin() as conn:
        conn.execute(amounts.insert(), [{"id": 1, "value": big}, {"id": 2, "value": Decimal("8212.2551")}])
        rows = dict(conn.execute(select(amounts.c.id, amounts.c.value)).all())
        raw = conn.exec_driver_sql("SELECT value FROM amounts WHERE id = 1").scalar()

    assert rows[1] == big
    assert isinstance(rows[1], Decimal)
    assert rows[2] == Decimal("8212.2551")
    assert raw == "123456789012.12345678"
    engine.dispose()
