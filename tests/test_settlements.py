import uuid

import pytest
from sqlalchemy import select, update

from conftest import RecordingQueue, make_gym, make_plan, make_user
from gymledger.core.db import SessionLocal
from gymledger.core.errors import GymNotFound, NoUnsettledPayments, SettlementAlreadyProcessed, SettlementNotFound
from gymledger.models import Payment, Settlement
from gymledger.services import settlements as aggregator
from gymledger.services import subscriptions as lifecycle


def paid_subscription(db, gateway, queue, user, plan, gym, payment_id):
    _, order = lifecycle.create_subscription(db, gateway, queue, user.id, plan.id, gym.id)
    lifecycle.activate_on_payment(db, queue, order.id, payment_id, None)


@pytest.fixture
def three_paid(db, gateway, queue, seed):
    for i in range(3):
        member = make_user(db, f"m{i}@example.com")
        paid_subscription(db, gateway, queue, member, seed.plan, seed.gym, f"pay_{i}")
    queue.reset()
    return seed


def test_settlement_claims_all_unsettled(db, queue, three_paid):
    seed = three_paid

    settlement = aggregator.create_settlement(db, queue, seed.gym.id, actor_id=seed.admin.id)

    assert settlement.amount == 3000
    assert settlement.status == "PENDING"
    claimed = db.scalars(select(Payment).where(Payment.settlement_id == settlement.id)).all()
    assert len(claimed) == 3
    assert queue.events() == ["SETTLEMENT_CREATED"]
    assert queue.of("audit")[0]["details"] == {"amount": 3000, "payment_count": 3}

    with pytest.raises(NoUnsettledPayments) as exc:
        aggregator.create_settlement(db, queue, seed.gym.id)
    assert exc.value.code == "NO_UNSETTLED_PAYMENTS"
    assert len(db.scalars(select(Settlement)).all()) == 1


def test_console_and_pending_payments_are_not_settled(db, gateway, queue, seed):
    lifecycle.create_console_subscription(db, queue, seed.member.id, seed.plan.id, seed.gym.id, seed.owner.id)
    lifecycle.create_subscription(db, gateway, queue, make_user(db, "p@example.com").id, seed.plan.id, seed.gym.id)

    assert aggregator.get_unsettled_payments(db, seed.gym.id) == []
    with pytest.raises(NoUnsettledPayments):
        aggregator.create_settlement(db, queue, seed.gym.id)


def test_manual_payments_are_settled(db, gateway, queue, seed):
    sub, _ = lifecycle.create_subscription(db, gateway, queue, seed.member.id, seed.plan.id, seed.gym.id)
    lifecycle.manual_activate(db, queue, sub.id, seed.owner.id)

    settlement = aggregator.create_settlement(db, queue, seed.gym.id)

    assert settlement.amount == 1000


def test_unknown_gym(db, queue):
    with pytest.raises(GymNotFound):
        aggregator.create_settlement(db, queue, uuid.uuid4())


def test_unsettled_summary(db, gateway, queue, three_paid):
    seed = three_paid
    quiet = make_gym(db, name="Quiet Gym")
    make_plan(db, quiet)
    ownerless = make_gym(db, name="Annex")
    annex_plan = make_plan(db, ownerless, price=500)
    paid_subscription(db, gateway, queue, seed.member, annex_plan, ownerless, "pay_annex")

    summary = {row.gym_name: row for row in aggregator.get_unsettled_summary(db)}

    assert set(summary) == {"Iron Temple", "Annex"}
    assert summary["Iron Temple"].amount == 3000
    assert summary["Iron Temple"].count == 3
    assert summary["Iron Temple"].owner_name == "Olga Owner"
    assert summary["Annex"].owner_name is None
    assert summary["Annex"].amount == 500


def test_concurrent_claim_is_retried(db, queue, three_paid, monkeypatch):
    seed = three_paid
    real = aggregator.get_unsettled_payments
    calls = []

    def racing(session, gym_id, lock=False):
        rows = real(session, gym_id, lock=lock)
        if not calls:
            # another settlement takes one row between our read and our claim
            rival = SessionLocal()
            try:
                other = Settlement(gym_id=gym_id, amount=rows[0].amount, status="PENDING")
                rival.add(other)
                rival.flush()
                rival.execute(update(Payment).where(Payment.id == rows[0].id).values(settlement_id=other.id))
                rival.commit()
            finally:
                rival.close()
        calls.append(len(rows))
        return rows

    monkeypatch.setattr(aggregator, "get_unsettled_payments", racing)

    settlement = aggregator.create_settlement(db, queue, seed.gym.id)

    assert calls == [3, 2]
    assert settlement.amount == 2000
    owners = db.scalars(select(Payment.settlement_id)).all()
    assert len(set(owners)) == 2
    assert None not in owners


def test_second_session_finds_nothing_left(db, queue, three_paid):
    seed = three_paid
    first = aggregator.create_settlement(db, queue, seed.gym.id)

    other = SessionLocal()
    try:
        with pytest.raises(NoUnsettledPayments):
            aggregator.create_settlement(other, RecordingQueue(), seed.gym.id)
    finally:
        other.close()

    assert first.amount == 3000
    assert len(db.scalars(select(Settlement)).all()) == 1


def test_interleaved_settlements_claim_each_payment_once(db, queue, three_paid, monkeypatch):
    seed = three_paid
    real = aggregator.get_unsettled_payments
    rival_settlements = []

    def racing(session, gym_id, lock=False):
        rows = real(session, gym_id, lock=lock)
        if session is db and not rival_settlements:
            # a second operator settles the same gym between our read and our claim
            rival = SessionLocal()
            try:
                rival_settlements.append(aggregator.create_settlement(rival, RecordingQueue(), gym_id))
            finally:
                rival.close()
        return rows

    monkeypatch.setattr(aggregator, "get_unsettled_payments", racing)

    with pytest.raises(NoUnsettledPayments) as exc:
        aggregator.create_settlement(db, queue, seed.gym.id)

    assert exc.value.code == "NO_UNSETTLED_PAYMENTS"
    (winner,) = rival_settlements
    assert winner.amount == 3000
    assert [s.id for s in db.scalars(select(Settlement)).all()] == [winner.id]
    assert set(db.scalars(select(Payment.settlement_id)).all()) == {winner.id}
    assert queue.jobs == []


def test_process_settlement_is_terminal(db, queue, three_paid):
    seed = three_paid
    settlement = aggregator.create_settlement(db, queue, seed.gym.id)
    queue.reset()

    processed = aggregator.process_settlement(db, queue, settlement.id, "UTR123", notes="NEFT", actor_id=seed.admin.id)

    assert processed.status == "PROCESSED"
    assert processed.transaction_id == "UTR123"
    assert processed.processed_at is not None
    assert queue.events() == ["SETTLEMENT_PROCESSED"]
    assert queue.of("audit")[0]["action"] == "PROCESS_SETTLEMENT"

    with pytest.raises(SettlementAlreadyProcessed):
        aggregator.process_settlement(db, queue, settlement.id, "UTR999")
    db.refresh(processed)
    assert processed.transaction_id == "UTR123"


def test_process_unknown_settlement(db, queue):
    with pytest.raises(SettlementNotFound):
        aggregator.process_settlement(db, queue, uuid.uuid4(), "UTR1")


def test_list_settlements_filters_by_gym(db, gateway, queue, three_paid):
    seed = three_paid
    other = make_gym(db, name="Other")
    other_plan = make_plan(db, other)
    paid_subscription(db, gateway, queue, seed.member, other_plan, other, "pay_other")
    mine = aggregator.create_settlement(db, queue, seed.gym.id)
    aggregator.create_settlement(db, queue, other.id)

    assert [s.id for s in aggregator.list_settlements(db, gym_ids=[seed.gym.id])] == [mine.id]
    assert len(aggregator.list_settlements(db)) == 2
    assert aggregator.list_settlements(db, status="PROCESSED") == []
