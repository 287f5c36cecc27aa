import uuid
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from gymledger.api.deps import (
    CurrentUser,
    clamp_page,
    get_current_user,
    get_db,
    get_payment_gateway,
    get_queue,
    require_roles,
    scoped_gym_ids,
)
from gymledger.models import Role
from gymledger.schemas.common import PageMeta
from gymledger.schemas.payments import PaymentOut, PaymentPage, PaymentVerifyIn, WebhookOut
from gymledger.schemas.subscriptions import SubscriptionEnvelope, SubscriptionOut
from gymledger.services import payments as ingress
from gymledger.services.gateway import PaymentGateway
from gymledger.services.queue import JobQueue

router = APIRouter()

staff = require_roles(Role.OWNER, Role.ADMIN)


@router.get("", response_model=PaymentPage)
def list_payments(
    gym_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    source: Literal["ONLINE", "MANUAL"] | None = None,
    status: str | None = None,
    settlement_status: Literal["SETTLED", "UNSETTLED"] | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    limit: int = 10,
    user: CurrentUser = Depends(staff),
    db: Session = Depends(get_db),
):
    page, limit = clamp_page(page, limit)
    payments, total = ingress.list_payments(
        db,
        gym_ids=scoped_gym_ids(db, user, gym_id),
        user_id=user_id,
        source=source,
        status=status,
        settlement_status=settlement_status,
        start=start_date,
        end=end_date,
        page=page,
        limit=limit,
    )
    return PaymentPage(data=[PaymentOut.model_validate(p) for p in payments], meta=PageMeta.build(total, page, limit))


@router.post("/verify", response_model=SubscriptionEnvelope)
def verify_payment(
    payload: PaymentVerifyIn,
    user=Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    queue: JobQueue = Depends(get_queue),
):
    subscription = ingress.confirm_payment(
        db,
        gateway,
        queue,
        payload.order_id,
        payload.payment_id,
        payload.signature,
        subscription_id_hint=payload.subscription_id,
    )
    return SubscriptionEnvelope(subscription=SubscriptionOut.model_validate(subscription))


async def read_raw_body(request: Request) -> bytes:
    # the HMAC covers the exact bytes received
    return await request.body()


@router.post("/webhook", response_model=WebhookOut)
def payment_webhook(
    raw_body: bytes = Depends(read_raw_body),
    x_razorpay_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    queue: JobQueue = Depends(get_queue),
):
    result = ingress.handle_webhook(db, gateway, queue, raw_body, x_razorpay_signature)
    return WebhookOut(
        status=result.status,
        event=result.event,
        subscription=SubscriptionOut.model_validate(result.subscription) if result.subscription else None,
    )
