"""Subscription lifecycle: creation, payment activation, manual and console activation.

Every operation performs one atomic update of Subscription/Payment rows and
only then hands its side effects (notifications, audit, invoice) to the
dispatch queue. A failed enqueue never rolls back or fails the transition.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gymledger.core.config import settings
from gymledger.core.dates import add_duration
from gymledger.core.db import paginate
from gymledger.core.errors import (
    AlreadyActive,
    GymNotFound,
    PaymentNotFound,
    PlanNotFound,
    SubscriptionNotFound,
)
from gymledger.models import (
    Gym,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Plan,
    Subscription,
    SubscriptionSource,
    SubscriptionStatus,
    User,
)
from gymledger.services.access_codes import generate_access_code
from gymledger.services.audit import audit_job
from gymledger.services.gateway import GatewayOrder, PaymentGateway
from gymledger.services.invoices import invoice_job
from gymledger.services.lookup import resolve_payment
from gymledger.services.notifications import NotificationEvent, notification_job
from gymledger.services.queue import JobQueue, dispatch

logger = logging.getLogger(__name__)

Job = Tuple[str, Dict[str, Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _load_plan_and_gym(db: Session, plan_id: uuid.UUID, gym_id: uuid.UUID) -> Tuple[Plan, Gym]:
    plan = db.get(Plan, plan_id)
    if plan is None or not plan.is_active:
        raise PlanNotFound()

    gym = db.get(Gym, gym_id)
    if gym is None:
        raise GymNotFound()

    if plan.gym_id != gym.id:
        raise PlanNotFound("Subscription plan does not belong to this gym")
    return plan, gym


def _lock_member(db: Session, user_id: uuid.UUID) -> Optional[User]:
    """Row-lock the member so concurrent creations for the same user serialize."""
    return db.scalar(select(User).where(User.id == user_id).with_for_update())


def _ensure_no_active(db: Session, user_id: uuid.UUID, gym_id: uuid.UUID, exclude_id: Optional[uuid.UUID] = None) -> None:
    stmt = (
        select(Subscription.id)
        .where(Subscription.user_id == user_id)
        .where(Subscription.gym_id == gym_id)
        .where(Subscription.status == SubscriptionStatus.ACTIVE.value)
    )
    if exclude_id is not None:
        stmt = stmt.where(Subscription.id != exclude_id)
    if db.scalar(stmt.limit(1)) is not None:
        raise AlreadyActive()


def _activation_window(plan: Plan, now: datetime) -> Tuple[datetime, datetime]:
    return now, add_duration(now, plan.duration_value, plan.duration_unit)


def _activated_job(subscription: Subscription) -> Job:
    return notification_job(
        subscription.user_id,
        NotificationEvent.SUBSCRIPTION_ACTIVATED,
        {
            "plan_name": subscription.plan.name,
            "gym_name": subscription.gym.name,
            "access_code": subscription.access_code,
        },
    )


def create_subscription(
    db: Session,
    gateway: PaymentGateway,
    queue: JobQueue,
    user_id: uuid.UUID,
    plan_id: uuid.UUID,
    gym_id: uuid.UUID,
    source: str = SubscriptionSource.APP.value,
) -> Tuple[Subscription, GatewayOrder]:
    """Create a PENDING subscription and its PENDING payment behind a gateway order.

    Nothing is written unless the gateway returns an order.
    """
    plan, gym = _load_plan_and_gym(db, plan_id, gym_id)
    _ensure_no_active(db, user_id, gym_id)

    now = _utcnow()
    start_date, end_date = _activation_window(plan, now)
    subscription_id = uuid.uuid4()
    access_code = generate_access_code(db)

    # PaymentServiceError propagates with nothing persisted
    order = gateway.create_order(
        plan.price * 100,
        str(subscription_id),
        plan.currency or settings.currency,
        {"subscriptionId": str(subscription_id)},
    )

    try:
        _lock_member(db, user_id)
        _ensure_no_active(db, user_id, gym_id)

        subscription = Subscription(
            id=subscription_id,
            user_id=user_id,
            gym_id=gym_id,
            plan_id=plan.id,
            status=SubscriptionStatus.PENDING.value,
            start_date=start_date,
            end_date=end_date,
            access_code=access_code,
            source=source,
        )
        payment = Payment(
            subscription_id=subscription_id,
            amount=plan.price,
            currency=plan.currency or settings.currency,
            status=PaymentStatus.PENDING.value,
            gateway_order_id=order.id,
        )
        db.add(subscription)
        db.add(payment)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "subscription_created",
        extra={"extra": {"subscription_id": str(subscription.id), "order_id": order.id, "user_id": str(user_id)}},
    )

    dispatch(
        queue,
        [
            notification_job(
                user_id,
                NotificationEvent.SUBSCRIPTION_CREATED,
                {"plan_name": plan.name, "gym_name": gym.name, "end_date": end_date.isoformat()},
            ),
            notification_job(
                user_id,
                NotificationEvent.PAYMENT_INITIATED,
                {"amount": plan.price, "plan_name": plan.name},
            ),
            audit_job(
                "CREATE_SUBSCRIPTION",
                "Subscription",
                subscription.id,
                actor_id=user_id,
                gym_id=gym_id,
                details={"plan_id": str(plan.id), "source": source},
            ),
        ],
    )
    return subscription, order


def activate_on_payment(
    db: Session,
    queue: JobQueue,
    gateway_order_id: Optional[str],
    gateway_payment_id: Optional[str],
    gateway_signature: Optional[str],
    subscription_id_hint=None,
) -> Subscription:
    """Idempotently activate the subscription behind a confirmed gateway payment.

    The PENDING -> COMPLETED step is a compare-and-set on the payment row;
    a caller that loses the race (or a redelivery) gets the subscription as
    it stands and enqueues nothing.
    """
    try:
        payment = resolve_payment(db, gateway_order_id, gateway_payment_id, subscription_id_hint)
        if payment is None:
            logger.error(
                "payment_not_found",
                extra={"extra": {"order_id": gateway_order_id, "payment_id": gateway_payment_id,
                                 "subscription_id": str(subscription_id_hint) if subscription_id_hint else None}},
            )
            raise PaymentNotFound()

        if payment.status == PaymentStatus.COMPLETED.value:
            subscription_id = payment.subscription_id
            db.rollback()
            logger.info("payment_already_completed", extra={"extra": {"payment_id": str(payment.id)}})
            return db.get(Subscription, subscription_id)

        now = _utcnow()
        values: Dict[str, Any] = {
            "status": PaymentStatus.COMPLETED.value,
            "method": PaymentMethod.ONLINE.value,
            "paid_at": now,
            "failure_reason": None,
        }
        if gateway_payment_id:
            values["gateway_payment_id"] = gateway_payment_id
        if gateway_signature:
            values["gateway_signature"] = gateway_signature

        claimed = db.execute(
            update(Payment)
            .where(Payment.id == payment.id)
            .where(Payment.status != PaymentStatus.COMPLETED.value)
            .values(**values)
        ).rowcount
        if claimed != 1:
            subscription_id = payment.subscription_id
            db.rollback()
            logger.info("payment_completed_concurrently", extra={"extra": {"payment_id": str(payment.id)}})
            return db.get(Subscription, subscription_id)

        subscription = db.get(Subscription, payment.subscription_id, with_for_update=True)
        subscription.start_date, subscription.end_date = _activation_window(subscription.plan, now)
        subscription.status = SubscriptionStatus.ACTIVE.value
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "subscription_activated",
        extra={"extra": {"subscription_id": str(subscription.id), "payment_id": str(payment.id),
                         "order_id": payment.gateway_order_id}},
    )

    plan = subscription.plan
    gym = subscription.gym
    jobs: List[Job] = [
        notification_job(
            subscription.user_id,
            NotificationEvent.PAYMENT_COMPLETED,
            {"amount": payment.amount, "plan_name": plan.name, "transaction_id": gateway_payment_id},
        ),
        _activated_job(subscription),
    ]
    if gym.owner_id:
        jobs.append(
            notification_job(
                gym.owner_id,
                NotificationEvent.SUBSCRIPTION_CREATED,
                {"plan_name": plan.name, "gym_name": gym.name, "end_date": subscription.end_date.isoformat()},
            )
        )
    jobs.append(invoice_job(subscription.id, subscription.access_code))
    dispatch(queue, jobs)
    return subscription


def manual_activate(db: Session, queue: JobQueue, subscription_id: uuid.UUID, actor_id: uuid.UUID) -> Subscription:
    try:
        subscription = db.get(Subscription, subscription_id, with_for_update=True)
        if subscription is None:
            raise SubscriptionNotFound()
        if subscription.status == SubscriptionStatus.ACTIVE.value:
            raise AlreadyActive("Subscription is already active")
        _ensure_no_active(db, subscription.user_id, subscription.gym_id, exclude_id=subscription.id)

        now = _utcnow()
        subscription.start_date, subscription.end_date = _activation_window(subscription.plan, now)
        subscription.status = SubscriptionStatus.ACTIVE.value

        pending = db.scalar(
            select(Payment)
            .where(Payment.subscription_id == subscription.id)
            .where(Payment.status == PaymentStatus.PENDING.value)
            .order_by(Payment.created_at.desc())
            .with_for_update()
        )
        if pending is not None:
            pending.status = PaymentStatus.COMPLETED.value
            pending.method = PaymentMethod.MANUAL.value
            pending.paid_at = now
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "subscription_manually_activated",
        extra={"extra": {"subscription_id": str(subscription.id), "actor_id": str(actor_id)}},
    )
    dispatch(
        queue,
        [
            _activated_job(subscription),
            audit_job(
                "ACTIVATE_SUBSCRIPTION",
                "Subscription",
                subscription.id,
                actor_id=actor_id,
                gym_id=subscription.gym_id,
                details={"method": PaymentMethod.MANUAL.value,
                         "payment_id": str(pending.id) if pending is not None else None},
            ),
        ],
    )
    return subscription


def create_console_subscription(
    db: Session,
    queue: JobQueue,
    user_id: uuid.UUID,
    plan_id: uuid.UUID,
    gym_id: uuid.UUID,
    actor_id: uuid.UUID,
) -> Subscription:
    """Owner/admin adds a member who paid at the desk: ACTIVE at once, no gateway order."""
    plan, gym = _load_plan_and_gym(db, plan_id, gym_id)
    try:
        member = _lock_member(db, user_id)
        _ensure_no_active(db, user_id, gym_id)

        now = _utcnow()
        start_date, end_date = _activation_window(plan, now)
        subscription = Subscription(
            user_id=user_id,
            gym_id=gym_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=start_date,
            end_date=end_date,
            access_code=generate_access_code(db),
            source=SubscriptionSource.CONSOLE.value,
        )
        db.add(subscription)
        db.flush()
        db.add(
            Payment(
                subscription_id=subscription.id,
                amount=plan.price,
                currency=plan.currency or settings.currency,
                status=PaymentStatus.COMPLETED.value,
                method=PaymentMethod.CONSOLE.value,
                paid_at=now,
            )
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "console_subscription_created",
        extra={"extra": {"subscription_id": str(subscription.id), "actor_id": str(actor_id)}},
    )

    member_name = (member.name or member.email) if member is not None else "Unknown User"
    jobs: List[Job] = [_activated_job(subscription)]
    if gym.owner_id:
        jobs.append(
            notification_job(
                gym.owner_id,
                NotificationEvent.MEMBER_ADDED,
                {"member_name": member_name, "plan_name": plan.name, "gym_name": gym.name},
            )
        )
    jobs.append(
        audit_job(
            "CREATE_SUBSCRIPTION_CONSOLE",
            "Subscription",
            subscription.id,
            actor_id=actor_id,
            gym_id=gym_id,
            details={"plan_id": str(plan.id), "source": SubscriptionSource.CONSOLE.value, "for_user_id": str(user_id)},
        )
    )
    dispatch(queue, jobs)
    return subscription


def get_subscription(db: Session, subscription_id: uuid.UUID) -> Subscription:
    subscription = db.get(Subscription, subscription_id)
    if subscription is None:
        raise SubscriptionNotFound()
    return subscription


def list_user_subscriptions(db: Session, user_id: uuid.UUID) -> List[Subscription]:
    """A member's own subscriptions, newest first."""
    stmt = (
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id)
    )
    return list(db.scalars(stmt).all())


def list_subscriptions(
    db: Session,
    gym_ids: Optional[List[uuid.UUID]] = None,
    user_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Subscription], int]:
    stmt = select(Subscription).order_by(Subscription.created_at.desc(), Subscription.id)
    if gym_ids is not None:
        stmt = stmt.where(Subscription.gym_id.in_(gym_ids))
    if user_id is not None:
        stmt = stmt.where(Subscription.user_id == user_id)
    if status:
        stmt = stmt.where(Subscription.status == status)
    return paginate(db, stmt, page, limit)


def grants_access(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    # status is authoritative where set, end_date decides expiry (no sweep job)
    now = now or _utcnow()
    return subscription.status == SubscriptionStatus.ACTIVE.value and subscription.end_date > now


def verify_access(db: Session, gym_id: uuid.UUID, access_code: str) -> Subscription:
    subscription = db.scalar(
        select(Subscription)
        .where(Subscription.access_code == access_code.strip().upper())
        .where(Subscription.gym_id == gym_id)
    )
    if subscription is None or not grants_access(subscription):
        raise SubscriptionNotFound("No active subscription for this access code")
    return subscription
