"""Settlement aggregation: batching a gym's collected payments into payouts.

A payment is claimable when it is COMPLETED, was not taken at the desk
(method CONSOLE) and has no ``settlement_id`` yet. Claiming is a single
transaction: the claimable rows are read FOR UPDATE and then re-claimed with
``settlement_id IS NULL`` in the UPDATE predicate, so the row count proves no
other settlement took any of them in between.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from gymledger.core.errors import (
    GymNotFound,
    NoUnsettledPayments,
    SettlementAlreadyProcessed,
    SettlementNotFound,
)
from gymledger.models import (
    Gym,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Settlement,
    SettlementStatus,
    Subscription,
    User,
)
from gymledger.services.audit import audit_job
from gymledger.services.notifications import NotificationEvent, notification_job
from gymledger.services.queue import JobQueue, dispatch

logger = logging.getLogger(__name__)

CLAIM_ATTEMPTS = 3


@dataclass
class UnsettledSummary:
    gym_id: uuid.UUID
    gym_name: str
    owner_name: Optional[str]
    amount: int
    count: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _claimable():
    return (
        Payment.status == PaymentStatus.COMPLETED.value,
        or_(Payment.method.is_(None), Payment.method != PaymentMethod.CONSOLE.value),
        Payment.settlement_id.is_(None),
    )


def get_unsettled_summary(db: Session) -> List[UnsettledSummary]:
    rows = db.execute(
        select(
            Gym.id,
            Gym.name,
            User.name,
            User.email,
            func.sum(Payment.amount),
            func.count(Payment.id),
        )
        .select_from(Payment)
        .join(Subscription, Subscription.id == Payment.subscription_id)
        .join(Gym, Gym.id == Subscription.gym_id)
        .outerjoin(User, User.id == Gym.owner_id)
        .where(*_claimable())
        .group_by(Gym.id, Gym.name, User.name, User.email)
        .order_by(Gym.name)
    ).all()

    return [
        UnsettledSummary(
            gym_id=gym_id,
            gym_name=gym_name,
            owner_name=owner_name or owner_email,
            amount=int(amount or 0),
            count=int(count),
        )
        for gym_id, gym_name, owner_name, owner_email, amount, count in rows
    ]


def get_unsettled_payments(db: Session, gym_id: uuid.UUID, lock: bool = False) -> Sequence[Payment]:
    stmt = (
        select(Payment)
        .join(Subscription, Subscription.id == Payment.subscription_id)
        .where(Subscription.gym_id == gym_id)
        .where(*_claimable())
        .order_by(Payment.paid_at, Payment.id)
    )
    if lock:
        stmt = stmt.with_for_update(of=Payment)
    return db.scalars(stmt).all()


def create_settlement(db: Session, queue: JobQueue, gym_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> Settlement:
    gym = db.get(Gym, gym_id)
    if gym is None:
        raise GymNotFound()

    settlement: Optional[Settlement] = None
    try:
        for attempt in range(1, CLAIM_ATTEMPTS + 1):
            payments = get_unsettled_payments(db, gym_id, lock=True)
            if not payments:
                raise NoUnsettledPayments()

            ids = [p.id for p in payments]
            candidate = Settlement(
                gym_id=gym_id,
                amount=sum(p.amount for p in payments),
                status=SettlementStatus.PENDING.value,
            )
            db.add(candidate)
            db.flush()

            claimed = db.execute(
                update(Payment)
                .where(Payment.id.in_(ids))
                .where(Payment.settlement_id.is_(None))
                .values(settlement_id=candidate.id)
            ).rowcount
            if claimed == len(ids):
                db.commit()
                db.refresh(candidate)
                settlement = candidate
                break

            db.rollback()
            logger.warning(
                "settlement_claim_conflict",
                extra={"extra": {"gym_id": str(gym_id), "attempt": attempt, "expected": len(ids), "claimed": claimed}},
            )
    except Exception:
        db.rollback()
        raise

    if settlement is None:
        raise NoUnsettledPayments("Unsettled payments were claimed concurrently")

    logger.info(
        "settlement_created",
        extra={"extra": {"settlement_id": str(settlement.id), "gym_id": str(gym_id),
                         "amount": settlement.amount, "payments": len(ids)}},
    )

    jobs = [
        audit_job(
            "CREATE_SETTLEMENT",
            "Settlement",
            settlement.id,
            actor_id=actor_id,
            gym_id=gym_id,
            details={"amount": settlement.amount, "payment_count": len(ids)},
        )
    ]
    if gym.owner_id:
        jobs.insert(
            0,
            notification_job(
                gym.owner_id,
                NotificationEvent.SETTLEMENT_CREATED,
                {"amount": settlement.amount, "gym_name": gym.name},
            ),
        )
    dispatch(queue, jobs)
    return settlement


def process_settlement(
    db: Session,
    queue: JobQueue,
    settlement_id: uuid.UUID,
    transaction_id: str,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> Settlement:
    """PENDING -> PROCESSED once the payout has been made. PROCESSED is terminal."""
    try:
        settlement = db.get(Settlement, settlement_id)
        if settlement is None:
            raise SettlementNotFound()

        changed = db.execute(
            update(Settlement)
            .where(Settlement.id == settlement_id)
            .where(Settlement.status == SettlementStatus.PENDING.value)
            .values(
                status=SettlementStatus.PROCESSED.value,
                transaction_id=transaction_id,
                notes=notes,
                processed_at=_utcnow(),
            )
        ).rowcount
        if changed != 1:
            raise SettlementAlreadyProcessed()
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(settlement)
    logger.info(
        "settlement_processed",
        extra={"extra": {"settlement_id": str(settlement.id), "transaction_id": transaction_id}},
    )

    gym = settlement.gym
    jobs = [
        audit_job(
            "PROCESS_SETTLEMENT",
            "Settlement",
            settlement.id,
            actor_id=actor_id,
            gym_id=settlement.gym_id,
            details={"transaction_id": transaction_id, "amount": settlement.amount},
        )
    ]
    if gym.owner_id:
        jobs.insert(
            0,
            notification_job(
                gym.owner_id,
                NotificationEvent.SETTLEMENT_PROCESSED,
                {"amount": settlement.amount, "gym_name": gym.name, "transaction_id": transaction_id},
            ),
        )
    dispatch(queue, jobs)
    return settlement


def get_settlement(db: Session, settlement_id: uuid.UUID) -> Settlement:
    settlement = db.get(Settlement, settlement_id)
    if settlement is None:
        raise SettlementNotFound()
    return settlement


def list_settlements(
    db: Session,
    gym_ids: Optional[Sequence[uuid.UUID]] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Sequence[Settlement]:
    stmt = select(Settlement).order_by(Settlement.created_at.desc(), Settlement.id)
    if gym_ids is not None:
        stmt = stmt.where(Settlement.gym_id.in_(list(gym_ids)))
    if status:
        stmt = stmt.where(Settlement.status == status)
    return db.scalars(stmt.offset(offset).limit(limit)).all()
