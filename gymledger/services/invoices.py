from __future__ import annotations

import json
import logging
import os
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from gymledger.core.config import settings
from gymledger.models import Payment, PaymentStatus, Subscription
from gymledger.services import queue as jobs
from gymledger.services.notifications import NotificationEvent, notification_job

logger = logging.getLogger(__name__)


def invoice_job(subscription_id: Any, access_code: str, send_access_code: bool = True) -> tuple[str, Dict[str, Any]]:
    return jobs.INVOICE, {
        "subscription_id": str(subscription_id),
        "access_code": access_code,
        "send_access_code": send_access_code,
    }


def invoice_number(payment: Payment) -> str:
    paid = payment.paid_at or payment.created_at
    return f"INV-{paid:%Y%m%d}-{str(payment.id)[:8].upper()}"


def build_invoice(subscription: Subscription, payment: Payment) -> Dict[str, Any]:
    user = subscription.user
    return {
        "invoice_number": invoice_number(payment),
        "date": (payment.paid_at or payment.created_at).isoformat(),
        "user_name": user.name or user.email,
        "user_mobile": user.mobile_number,
        "gym_name": subscription.gym.name,
        "plan_name": subscription.plan.name,
        "start_date": subscription.start_date.isoformat(),
        "expiry_date": subscription.end_date.isoformat(),
        "access_code": subscription.access_code,
        "amount": payment.amount,
        "currency": payment.currency,
        "payment_method": payment.method,
        "transaction_id": payment.gateway_payment_id,
    }


def invoice_path(subscription_id: Any, base_dir: Optional[str] = None) -> str:
    return os.path.join(base_dir or settings.invoices_dir, "subscriptions", str(subscription_id), "invoice.json")


def handle_invoice_job(db: Session, job_id: Optional[str], payload: Dict[str, Any], queue: jobs.JobQueue) -> None:
    subscription = db.get(Subscription, uuid.UUID(payload["subscription_id"]))
    if subscription is None:
        raise LookupError(f"Subscription {payload['subscription_id']} not found")

    payment = db.scalar(
        select(Payment)
        .where(Payment.subscription_id == subscription.id)
        .where(Payment.status == PaymentStatus.COMPLETED.value)
        .order_by(Payment.paid_at.desc())
    )
    if payment is None:
        raise LookupError(f"No completed payment for subscription {subscription.id}")

    document = build_invoice(subscription, payment)

    path = invoice_path(subscription.id)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(document, f, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)
    logger.info("invoice_written", extra={"extra": {"subscription_id": str(subscription.id), "path": path}})

    if payload.get("send_access_code"):
        # one access-code notice per invoice job, even when the job is redelivered
        notice_id = f"{job_id}:access-code" if job_id else None
        queue.enqueue(
            *notification_job(
                subscription.user_id,
                NotificationEvent.ACCESS_CODE_SENT,
                {
                    "access_code": subscription.access_code,
                    "gym_name": subscription.gym.name,
                    "plan_name": subscription.plan.name,
                    "end_date": subscription.end_date.isoformat(),
                    "invoice_number": document["invoice_number"],
                },
            ),
            job_id=notice_id,
        )
