"""Payment ingress: signature checks and normalization of gateway confirmations.

Both transports (the client-side verify call and the gateway webhook) end in
``subscriptions.activate_on_payment``, which is idempotent per payment row.
No state is touched before the signature has been checked, and a bad
signature can only ever move a PENDING payment to FAILED.

The payment history read path used by the consoles lives here as well.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from gymledger.core.config import settings
from gymledger.core.db import paginate
from gymledger.core.errors import InvalidSignature, InvalidWebhookPayload
from gymledger.models import Payment, PaymentStatus, Subscription, SubscriptionSource
from gymledger.services import subscriptions
from gymledger.services.gateway import PaymentGateway
from gymledger.services.lookup import resolve_payment
from gymledger.services.notifications import NotificationEvent, notification_job
from gymledger.services.queue import JobQueue, dispatch

logger = logging.getLogger(__name__)

PAYMENT_CAPTURED = "payment.captured"
PAYMENT_FAILED = "payment.failed"

# list filters
PAYMENT_SOURCE_ONLINE = "ONLINE"
PAYMENT_SOURCE_MANUAL = "MANUAL"
SETTLED = "SETTLED"
UNSETTLED = "UNSETTLED"


@dataclass
class GatewayPaymentRef:
    order_id: Optional[str]
    payment_id: Optional[str]
    subscription_id: Optional[str]
    error: Optional[str] = None


@dataclass
class WebhookResult:
    event: str
    status: str  # processed/ignored/failed
    subscription: Optional[Subscription] = None


def mark_payment_failed(
    db: Session,
    queue: JobQueue,
    order_id: Optional[str],
    payment_id: Optional[str],
    subscription_id_hint=None,
    reason: Optional[str] = None,
) -> Optional[Payment]:
    """Move a resolvable PENDING payment to FAILED; COMPLETED payments are left alone."""
    try:
        payment = resolve_payment(db, order_id, payment_id, subscription_id_hint)
        if payment is None:
            db.rollback()
            return None

        changed = db.execute(
            update(Payment)
            .where(Payment.id == payment.id)
            .where(Payment.status == PaymentStatus.PENDING.value)
            .values(status=PaymentStatus.FAILED.value, failure_reason=(reason or "")[:255] or None)
        ).rowcount
        if changed != 1:
            db.rollback()
            return payment
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.warning(
        "payment_failed",
        extra={"extra": {"payment_id": str(payment.id), "order_id": payment.gateway_order_id, "reason": reason}},
    )
    subscription = payment.subscription
    dispatch(
        queue,
        [
            notification_job(
                subscription.user_id,
                NotificationEvent.PAYMENT_FAILED,
                {"amount": payment.amount, "plan_name": subscription.plan.name, "reason": reason},
            )
        ],
    )
    return payment


def confirm_payment(
    db: Session,
    gateway: PaymentGateway,
    queue: JobQueue,
    order_id: str,
    payment_id: str,
    signature: str,
    subscription_id_hint=None,
) -> Subscription:
    """Client-side verify call made after checkout."""
    if not gateway.verify_signature(order_id, payment_id, signature):
        logger.warning("payment_signature_invalid", extra={"extra": {"order_id": order_id, "payment_id": payment_id}})
        mark_payment_failed(db, queue, order_id, payment_id, subscription_id_hint, reason="Signature verification failed")
        raise InvalidSignature()

    return subscriptions.activate_on_payment(db, queue, order_id, payment_id, signature, subscription_id_hint)


def parse_webhook(raw_body: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise InvalidWebhookPayload() from e
    if not isinstance(event, dict):
        raise InvalidWebhookPayload()
    return event


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def payment_ref(event: Dict[str, Any]) -> Optional[GatewayPaymentRef]:
    """Pull the payment entity out of an event; any other shape yields None."""
    payload = event.get("payload")
    payment = payload.get("payment") if isinstance(payload, dict) else None
    entity = payment.get("entity") if isinstance(payment, dict) else None
    if not isinstance(entity, dict):
        return None
    notes = entity.get("notes") if isinstance(entity.get("notes"), dict) else {}
    return GatewayPaymentRef(
        order_id=_text(entity.get("order_id")),
        payment_id=_text(entity.get("id")),
        subscription_id=_text(notes.get("subscriptionId")),
        error=_text(entity.get("error_description")),
    )


def handle_webhook(
    db: Session,
    gateway: PaymentGateway,
    queue: JobQueue,
    raw_body: bytes,
    signature: Optional[str],
    secret: Optional[str] = None,
) -> WebhookResult:
    secret = secret if secret is not None else settings.gateway_webhook_secret

    if not gateway.verify_webhook_signature(raw_body, signature or "", secret):
        logger.warning("webhook_signature_invalid")
        try:
            ref = payment_ref(parse_webhook(raw_body))
        except InvalidWebhookPayload:
            ref = None
        if ref is not None:
            mark_payment_failed(
                db, queue, ref.order_id, ref.payment_id, ref.subscription_id, reason="Invalid webhook signature"
            )
        raise InvalidSignature("Invalid webhook signature")

    event = parse_webhook(raw_body)
    name = str(event.get("event") or "")
    ref = payment_ref(event)

    if name == PAYMENT_CAPTURED:
        if ref is None:
            raise InvalidWebhookPayload("payment.captured without a payment entity")
        subscription = subscriptions.activate_on_payment(
            db, queue, ref.order_id, ref.payment_id, None, ref.subscription_id
        )
        return WebhookResult(event=name, status="processed", subscription=subscription)

    if name == PAYMENT_FAILED:
        if ref is None:
            raise InvalidWebhookPayload("payment.failed without a payment entity")
        mark_payment_failed(db, queue, ref.order_id, ref.payment_id, ref.subscription_id, reason=ref.error)
        return WebhookResult(event=name, status="failed")

    logger.info("webhook_event_ignored", extra={"extra": {"event_name": name}})
    return WebhookResult(event=name, status="ignored")


def list_payments(
    db: Session,
    gym_ids: Optional[Sequence[uuid.UUID]] = None,
    user_id: Optional[uuid.UUID] = None,
    source: Optional[str] = None,
    status: Optional[str] = None,
    settlement_status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Payment], int]:
    """Payment history for the admin and owner consoles.

    ``source`` is ONLINE (app or WhatsApp checkout) or MANUAL (desk);
    ``settlement_status`` is SETTLED or UNSETTLED.
    """
    stmt = (
        select(Payment)
        .join(Subscription, Payment.subscription_id == Subscription.id)
        .order_by(Payment.created_at.desc(), Payment.id)
    )
    if gym_ids is not None:
        stmt = stmt.where(Subscription.gym_id.in_(list(gym_ids)))
    if user_id is not None:
        stmt = stmt.where(Subscription.user_id == user_id)
    if source == PAYMENT_SOURCE_ONLINE:
        stmt = stmt.where(Subscription.source.in_([SubscriptionSource.APP.value, SubscriptionSource.WHATSAPP.value]))
    elif source == PAYMENT_SOURCE_MANUAL:
        stmt = stmt.where(Subscription.source == SubscriptionSource.CONSOLE.value)
    if status:
        stmt = stmt.where(Payment.status == status)
    if settlement_status == SETTLED:
        stmt = stmt.where(Payment.settlement_id.is_not(None))
    elif settlement_status == UNSETTLED:
        stmt = stmt.where(Payment.settlement_id.is_(None))
    if start is not None:
        stmt = stmt.where(Payment.created_at >= start)
    if end is not None:
        stmt = stmt.where(Payment.created_at <= end)
    return paginate(db, stmt, page, limit)
