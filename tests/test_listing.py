import uuid
from datetime import datetime, timedelta, timezone

import pytest

from conftest import RecordingQueue, make_gym, make_plan, make_user
from gymledger.core.errors import NotificationNotFound
from gymledger.services import audit
from gymledger.services import notifications as inbox
from gymledger.services import payments as ingress
from gymledger.services import settlements as aggregator
from gymledger.services import subscriptions as lifecycle
from gymledger.services.notifications import NotificationEvent, handle_notification_job, notification_job


@pytest.fixture
def ledger(db, gateway, queue, seed):
    """Two paid app subscriptions, one desk subscription and one unpaid checkout."""
    for i in range(2):
        member = make_user(db, f"paid{i}@example.com")
        _, order = lifecycle.create_subscription(db, gateway, queue, member.id, seed.plan.id, seed.gym.id)
        lifecycle.activate_on_payment(db, queue, order.id, f"pay_{i}", None)
    lifecycle.create_console_subscription(db, queue, seed.member.id, seed.plan.id, seed.gym.id, seed.owner.id)
    lifecycle.create_subscription(db, gateway, queue, make_user(db, "later@example.com").id, seed.plan.id, seed.gym.id)
    queue.reset()
    return seed


def test_payment_history_filters(db, queue, ledger):
    seed = ledger

    _, total = ingress.list_payments(db)
    assert total == 4

    online, total = ingress.list_payments(db, source="ONLINE")
    assert total == 3
    assert {p.method for p in online} == {"ONLINE", None}

    desk, total = ingress.list_payments(db, source="MANUAL")
    assert total == 1
    assert desk[0].method == "CONSOLE"

    _, total = ingress.list_payments(db, status="COMPLETED")
    assert total == 3

    _, total = ingress.list_payments(db, user_id=seed.member.id)
    assert total == 1

    settlement = aggregator.create_settlement(db, queue, seed.gym.id)
    settled, total = ingress.list_payments(db, settlement_status="SETTLED")
    assert total == 2
    assert {p.settlement_id for p in settled} == {settlement.id}
    _, total = ingress.list_payments(db, settlement_status="UNSETTLED")
    assert total == 2


def test_payment_history_scoping_and_pages(db, ledger):
    seed = ledger
    elsewhere = make_gym(db, name="Elsewhere")

    assert ingress.list_payments(db, gym_ids=[elsewhere.id]) == ([], 0)
    assert ingress.list_payments(db, gym_ids=[]) == ([], 0)

    first, total = ingress.list_payments(db, gym_ids=[seed.gym.id], page=1, limit=3)
    second, _ = ingress.list_payments(db, gym_ids=[seed.gym.id], page=2, limit=3)
    assert total == 4
    assert len(first) == 3
    assert len(second) == 1
    assert {p.id for p in first}.isdisjoint({p.id for p in second})


def test_payment_history_date_range(db, ledger):
    now = datetime.now(timezone.utc)

    _, total = ingress.list_payments(db, start=now - timedelta(days=1), end=now + timedelta(days=1))
    assert total == 4
    _, total = ingress.list_payments(db, end=now - timedelta(days=1))
    assert total == 0


def test_subscription_lists(db, gateway, queue, ledger):
    seed = ledger
    other_gym = make_gym(db, name="Annex")
    other_plan = make_plan(db, other_gym)
    lifecycle.create_subscription(db, gateway, queue, seed.member.id, other_plan.id, other_gym.id)

    mine = lifecycle.list_user_subscriptions(db, seed.member.id)
    assert {s.gym_id for s in mine} == {seed.gym.id, other_gym.id}

    _, total = lifecycle.list_subscriptions(db, gym_ids=[seed.gym.id])
    assert total == 4
    active, total = lifecycle.list_subscriptions(db, gym_ids=[seed.gym.id], status="ACTIVE")
    assert total == 3
    assert all(s.status == "ACTIVE" for s in active)
    _, total = lifecycle.list_subscriptions(db, user_id=seed.member.id)
    assert total == 2


def _notify(db, user, event=NotificationEvent.SETTLEMENT_CREATED):
    _, payload = notification_job(user.id, event, {"amount": 1000, "gym_name": "Iron Temple"})
    handle_notification_job(db, str(uuid.uuid4()), payload, RecordingQueue())


def test_inbox_read_state(db, seed):
    for _ in range(3):
        _notify(db, seed.owner)
    _notify(db, seed.member)

    rows, total = inbox.list_notifications(db, user_id=seed.owner.id)
    assert total == 3

    read = inbox.mark_read(db, rows[0].id, seed.owner.id)
    assert read.is_read is True
    assert inbox.list_notifications(db, user_id=seed.owner.id, is_read=False)[1] == 2

    with pytest.raises(NotificationNotFound):
        inbox.mark_read(db, rows[1].id, seed.member.id)

    assert inbox.mark_all_read(db, seed.owner.id) == 2
    assert inbox.mark_all_read(db, seed.owner.id) == 0
    assert inbox.list_notifications(db, user_id=seed.member.id, is_read=False)[1] == 1
    assert inbox.list_notifications(db, type="INFO")[1] == 4


def test_audit_log_queries(db, seed):
    other_gym = make_gym(db, name="Annex")
    jobs = [
        audit.audit_job("CREATE_SUBSCRIPTION", "Subscription", uuid.uuid4(), actor_id=seed.member.id, gym_id=seed.gym.id),
        audit.audit_job("CREATE_SETTLEMENT", "Settlement", uuid.uuid4(), actor_id=seed.admin.id, gym_id=seed.gym.id),
        audit.audit_job("CREATE_SETTLEMENT", "Settlement", uuid.uuid4(), actor_id=seed.admin.id, gym_id=other_gym.id),
    ]
    for i, (_, payload) in enumerate(jobs):
        audit.handle_audit_job(db, f"audit-{i}", payload, RecordingQueue())

    assert audit.list_audit_logs(db, gym_id=seed.gym.id)[1] == 2
    assert audit.list_audit_logs(db, actor_id=seed.admin.id)[1] == 2
    rows, total = audit.list_audit_logs(db, entity="Subscription")
    assert total == 1
    assert rows[0].actor_id == str(seed.member.id)
    assert audit.list_audit_logs(db, action="CREATE_SETTLEMENT", gym_id=other_gym.id)[1] == 1
