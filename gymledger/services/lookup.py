"""Resolution of an inbound gateway confirmation to a Payment row.

The order is fixed and part of the ingress contract:

1. exact match on ``gateway_order_id`` (the id we stored when creating the order)
2. exact match on ``gateway_payment_id`` (set once a payment was seen before)
3. the most recent PENDING payment of the hinted subscription
4. nothing: the caller reports ``PAYMENT_NOT_FOUND``

The matched row is selected FOR UPDATE so the caller's transaction owns it.
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from gymledger.models import Payment, PaymentStatus


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def resolve_payment(
    db: Session,
    gateway_order_id: Optional[str] = None,
    gateway_payment_id: Optional[str] = None,
    subscription_id_hint=None,
) -> Optional[Payment]:
    # ids come from untrusted bodies; only strings reach the filters
    if isinstance(gateway_order_id, str) and gateway_order_id:
        payment = db.scalar(
            select(Payment).where(Payment.gateway_order_id == gateway_order_id).with_for_update()
        )
        if payment is not None:
            return payment

    if isinstance(gateway_payment_id, str) and gateway_payment_id:
        payment = db.scalar(
            select(Payment)
            .where(Payment.gateway_payment_id == gateway_payment_id)
            .order_by(Payment.created_at.desc())
            .with_for_update()
        )
        if payment is not None:
            return payment

    subscription_id = _as_uuid(subscription_id_hint)
    if subscription_id is not None:
        return db.scalar(
            select(Payment)
            .where(Payment.subscription_id == subscription_id)
            .where(Payment.status == PaymentStatus.PENDING.value)
            .order_by(Payment.created_at.desc())
            .with_for_update()
        )

    return None
