import json

import pytest
from sqlalchemy import func, select

from conftest import run_jobs, sign, sign_webhook
from gymledger.core.config import settings
from gymledger.core.errors import InvalidSignature, InvalidWebhookPayload
from gymledger.models import Notification, Payment
from gymledger.services import payments as ingress
from gymledger.services import subscriptions as lifecycle
from gymledger.worker import Outcome


def webhook_body(event, order_id=None, payment_id=None, subscription_id=None, error=None):
    entity = {"id": payment_id, "order_id": order_id, "notes": {}}
    if subscription_id:
        entity["notes"]["subscriptionId"] = str(subscription_id)
    if error:
        entity["error_description"] = error
    return json.dumps({"event": event, "payload": {"payment": {"entity": entity}}}).encode("utf-8")


@pytest.fixture
def pending(db, gateway, queue, seed):
    sub, order = lifecycle.create_subscription(db, gateway, queue, seed.member.id, seed.plan.id, seed.gym.id)
    queue.reset()
    return sub, order


@pytest.fixture
def invoices_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "invoices_dir", str(tmp_path))
    return tmp_path


def payment_of(db, sub):
    payment = db.scalar(select(Payment).where(Payment.subscription_id == sub.id))
    db.refresh(payment)
    return payment


def test_confirm_with_valid_signature(db, gateway, queue, pending):
    sub, order = pending

    active = ingress.confirm_payment(db, gateway, queue, order.id, "pay_1", sign(order.id, "pay_1"))

    assert active.id == sub.id
    assert active.status == "ACTIVE"
    assert payment_of(db, sub).gateway_signature == sign(order.id, "pay_1")


def test_bad_signature_marks_payment_failed(db, gateway, queue, pending):
    sub, order = pending

    with pytest.raises(InvalidSignature) as exc:
        ingress.confirm_payment(db, gateway, queue, order.id, "pay_1", "forged")

    assert exc.value.code == "INVALID_SIGNATURE"
    payment = payment_of(db, sub)
    assert payment.status == "FAILED"
    assert payment.failure_reason == "Signature verification failed"
    db.refresh(sub)
    assert sub.status == "PENDING"
    assert queue.events() == ["PAYMENT_FAILED"]


def test_bad_signature_never_downgrades_completed(db, gateway, queue, pending):
    sub, order = pending
    ingress.confirm_payment(db, gateway, queue, order.id, "pay_1", sign(order.id, "pay_1"))
    queue.reset()

    with pytest.raises(InvalidSignature):
        ingress.confirm_payment(db, gateway, queue, order.id, "pay_1", "forged")

    assert payment_of(db, sub).status == "COMPLETED"
    db.refresh(sub)
    assert sub.status == "ACTIVE"
    assert queue.jobs == []


def test_failed_payment_can_still_complete(db, gateway, queue, pending):
    sub, order = pending
    with pytest.raises(InvalidSignature):
        ingress.confirm_payment(db, gateway, queue, order.id, "pay_1", "forged")

    active = ingress.confirm_payment(db, gateway, queue, order.id, "pay_1", sign(order.id, "pay_1"))

    assert active.status == "ACTIVE"
    payment = payment_of(db, sub)
    assert payment.status == "COMPLETED"
    assert payment.failure_reason is None


def test_webhook_captured_twice_activates_once(db, gateway, queue, pending, invoices_dir):
    sub, order = pending
    body = webhook_body("payment.captured", order.id, "pay_1")

    first = ingress.handle_webhook(db, gateway, queue, body, sign_webhook(body))
    second = ingress.handle_webhook(db, gateway, queue, body, sign_webhook(body))

    assert first.status == second.status == "processed"
    assert second.subscription.status == "ACTIVE"
    assert payment_of(db, sub).gateway_signature is None

    assert all(outcome is Outcome.DONE for outcome in run_jobs(queue))
    activated = db.scalar(
        select(func.count()).select_from(Notification).where(Notification.event == "SUBSCRIPTION_ACTIVATED")
    )
    assert activated == 1
    assert (invoices_dir / "subscriptions" / str(sub.id) / "invoice.json").exists()


def test_webhook_falls_back_to_subscription_hint(db, gateway, queue, pending):
    sub, _ = pending
    body = webhook_body("payment.captured", "order_other", "pay_7", subscription_id=sub.id)

    result = ingress.handle_webhook(db, gateway, queue, body, sign_webhook(body))

    assert result.subscription.id == sub.id
    assert payment_of(db, sub).gateway_payment_id == "pay_7"


def test_webhook_payment_failed(db, gateway, queue, pending):
    sub, order = pending
    body = webhook_body("payment.failed", order.id, "pay_1", error="Card declined")

    result = ingress.handle_webhook(db, gateway, queue, body, sign_webhook(body))

    assert result.status == "failed"
    payment = payment_of(db, sub)
    assert payment.status == "FAILED"
    assert payment.failure_reason == "Card declined"
    assert queue.of("notification")[0]["data"]["reason"] == "Card declined"


def test_webhook_bad_signature(db, gateway, queue, pending):
    sub, order = pending
    body = webhook_body("payment.captured", order.id, "pay_1")

    with pytest.raises(InvalidSignature):
        ingress.handle_webhook(db, gateway, queue, body, "not-the-signature")

    assert payment_of(db, sub).status == "FAILED"


def test_webhook_unknown_event_is_ignored(db, gateway, queue, pending):
    sub, _ = pending
    body = json.dumps({"event": "refund.created", "payload": {}}).encode("utf-8")

    result = ingress.handle_webhook(db, gateway, queue, body, sign_webhook(body))

    assert result.status == "ignored"
    assert payment_of(db, sub).status == "PENDING"
    assert queue.jobs == []


def test_webhook_garbage_body(db, gateway, queue):
    body = b"{not json"
    with pytest.raises(InvalidWebhookPayload):
        ingress.handle_webhook(db, gateway, queue, body, sign_webhook(body))


def test_non_ascii_signature_marks_payment_failed(db, gateway, queue, pending):
    sub, order = pending

    with pytest.raises(InvalidSignature):
        ingress.confirm_payment(db, gateway, queue, order.id, "pay_1", "é" * 64)

    assert payment_of(db, sub).status == "FAILED"


def test_webhook_non_ascii_signature(db, gateway, queue, pending):
    sub, order = pending
    body = webhook_body("payment.captured", order.id, "pay_1")

    with pytest.raises(InvalidSignature):
        ingress.handle_webhook(db, gateway, queue, body, "café")

    assert payment_of(db, sub).status == "FAILED"


@pytest.mark.parametrize(
    "event",
    [
        {"event": "payment.captured", "payload": {"payment": "x"}},
        {"event": "payment.captured", "payload": ["payment"]},
        {"event": "payment.captured", "payload": {"payment": {"entity": "x"}}},
        {"event": "payment.captured", "payload": {"payment": {"entity": {"order_id": {"$ne": 1}, "id": [1]}}}},
    ],
)
def test_unsigned_odd_shapes_are_rejected_cleanly(db, gateway, queue, pending, event):
    sub, _ = pending
    body = json.dumps(event).encode("utf-8")

    with pytest.raises(InvalidSignature):
        ingress.handle_webhook(db, gateway, queue, body, "bogus")

    assert payment_of(db, sub).status == "PENDING"
    assert queue.jobs == []


def test_payment_ref_keeps_only_string_ids():
    ref = ingress.payment_ref(
        {"payload": {"payment": {"entity": {"order_id": 42, "id": "pay_1", "notes": {"subscriptionId": ["s"]}}}}}
    )

    assert ref.order_id is None
    assert ref.payment_id == "pay_1"
    assert ref.subscription_id is None
    assert ingress.payment_ref({"payload": {"payment": "x"}}) is None
    assert ingress.payment_ref({"payload": None}) is None
