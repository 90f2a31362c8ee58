import json
from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest

from offramp.errors import NotFoundError, StateConflictError
from offramp.utils.signing import verify
from offramp.utils.timeutils import unix_seconds

SECRET = "whsec_test"


@pytest.fixture
def event(dispatcher):
    return dispatcher.enqueue(
        "partner_test", "deposit.detected", "https://partner.example/hook",
        {"event": "deposit.detected", "transactionId": "txn_1", "amount": "100.00"},
        SECRET, session_id="sess_1", transaction_id="txn_1",
    )


def test_enqueue_stores_signed_body(event):
    assert event.status == "pending"
    assert event.attempts == 0
    assert event.payload == '{"amount":"100.00","event":"deposit.detected","transactionId":"txn_1"}'
    assert verify(event.payload, event.signature, SECRET)


def test_enqueue_without_url_is_skipped(dispatcher, storage):
    assert dispatcher.enqueue("partner_test", "payout.settled", None, {}, SECRET) is None
    assert storage.list_webhook_events() == []


def test_successful_delivery(dispatcher, receiver, event, clock):
    delivered = dispatcher.deliver(event)

    assert delivered.status == "delivered"
    assert delivered.attempts == 1
    assert delivered.last_status_code == 200
    assert delivered.next_retry_at is None

    [request] = receiver.requests
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["X-Event"] == "deposit.detected"
    assert request.headers["X-Timestamp"] == str(unix_seconds(clock.now))
    assert request.headers["X-Signature"] == event.signature
    assert json.loads(request.content)["transactionId"] == "txn_1"
    assert verify(request.content, request.headers["X-Signature"], SECRET)


def test_failures_back_off_then_fail_permanently(dispatcher, receiver, storage, event, clock):
    receiver.responses = [500, 503, 502]

    assert dispatcher.process_due()["retrying"] == 1
    first = storage.get_webhook_event(event.id)
    assert first.attempts == 1
    assert first.last_status_code == 500
    assert first.next_retry_at == clock.now + timedelta(seconds=30)

    # Not due yet
    assert dispatcher.process_due()["processed"] == 0

    clock.advance(seconds=30)
    assert dispatcher.process_due()["retrying"] == 1
    second = storage.get_webhook_event(event.id)
    assert second.attempts == 2
    assert second.next_retry_at == clock.now + timedelta(seconds=60)

    clock.advance(seconds=60)
    assert dispatcher.process_due()["failed"] == 1
    final = storage.get_webhook_event(event.id)
    assert final.status == "failed"
    assert final.attempts == 3
    assert final.next_retry_at is None
    assert "502" in final.error_message
    assert len(receiver.requests) == 3


def test_network_errors_are_retried(dispatcher, receiver, event):
    receiver.responses = [httpx.ConnectError("connection refused")]
    result = dispatcher.deliver(event)
    assert result.status == "retrying"
    assert result.last_status_code is None
    assert "Network error" in result.error_message


def bad_url_event(dispatcher):
    return dispatcher.enqueue("partner_test", "payout.settled", "http://[::1/hook",
                              {"event": "payout.settled"}, SECRET)


def test_malformed_url_is_retried_then_failed(dispatcher, receiver, storage, clock):
    broken = bad_url_event(dispatcher)

    result = dispatcher.deliver(broken)
    assert result.status == "retrying"
    assert "Invalid webhook URL" in result.error_message

    for _ in range(4):
        clock.advance(hours=1)
        dispatcher.process_due()

    final = storage.get_webhook_event(broken.id)
    assert final.status == "failed"
    assert final.attempts == final.max_attempts == 3
    assert receiver.requests == []


def test_malformed_url_does_not_block_the_batch(dispatcher, receiver, storage, event):
    broken = bad_url_event(dispatcher)

    counts = dispatcher.process_due()

    assert counts == {"processed": 2, "delivered": 1, "retrying": 1, "failed": 0}
    assert storage.get_webhook_event(event.id).status == "delivered"
    assert storage.get_webhook_event(broken.id).status == "retrying"


def test_settled_events_are_not_resent(dispatcher, receiver, storage, event, clock):
    delivered = dispatcher.deliver(event)
    assert dispatcher.deliver(delivered).attempts == 1

    receiver.responses = [500, 500, 500]
    other = dispatcher.enqueue("partner_test", "payout.settled", "https://partner.example/hook",
                               {"event": "payout.settled"}, SECRET)
    for _ in range(3):
        dispatcher.process_due()
        clock.advance(hours=1)
    failed = storage.get_webhook_event(other.id)
    assert failed.status == "failed"

    assert dispatcher.deliver(failed).attempts == 3
    assert storage.get_webhook_event(other.id).attempts == 3
    assert len(receiver.requests) == 4


def test_backoff_is_capped(dispatcher):
    assert dispatcher.backoff(1) == timedelta(seconds=30)
    assert dispatcher.backoff(3) == timedelta(seconds=120)
    assert dispatcher.backoff(20) == timedelta(seconds=3600)


def test_claimed_event_is_not_sent_twice(dispatcher, receiver, event):
    # Two sweeps that listed the event before either claimed it
    seen = SimpleNamespace(id=event.id, attempts=event.attempts, status=event.status)
    assert dispatcher.deliver(seen).status == "delivered"
    assert dispatcher.deliver(seen).status == "delivered"
    assert len(receiver.requests) == 1


def test_manual_retry_requeues_failed_event(dispatcher, receiver, storage, event, clock):
    receiver.responses = [500, 500, 500]
    for _ in range(3):
        dispatcher.process_due()
        clock.advance(hours=1)
    assert storage.get_webhook_event(event.id).status == "failed"

    requeued = dispatcher.retry(event.id)
    assert requeued.status == "pending"
    assert requeued.attempts == 0

    assert dispatcher.process_due()["delivered"] == 1
    assert len(receiver.requests) == 4


def test_retry_rejects_non_failed_and_unknown_events(dispatcher, event):
    with pytest.raises(StateConflictError):
        dispatcher.retry(event.id)
    with pytest.raises(NotFoundError):
        dispatcher.retry("evt_missing")


def test_background_sweep_uses_its_own_storage_handle(storage, receiver, event):
    from contextlib import contextmanager

    from offramp.scheduler import deliver_due_webhooks

    @contextmanager
    def storage_factory():
        yield storage

    counts = deliver_due_webhooks(storage_factory, client=receiver.client())
    assert counts["delivered"] == 1
    assert storage.get_webhook_event(event.id).status == "delivered"


def test_background_sweep_logs_and_swallows_storage_failures(caplog):
    from offramp.scheduler import deliver_due_webhooks

    def broken_factory():
        raise RuntimeError("database is locked")

    assert deliver_due_webhooks(broken_factory) is None
    assert "Sweep failed" in caplog.text


def test_sweep_scheduler_respects_disabled_setting(settings):
    from offramp.scheduler import WebhookSweepScheduler

    sweeper = WebhookSweepScheduler(settings.model_copy(update={"WEBHOOK_SWEEP_ENABLED": False}))
    sweeper.start()
    assert not sweeper.scheduler.running
    sweeper.shutdown()
