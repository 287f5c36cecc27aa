import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from gymledger.api.deps import (
    CurrentUser,
    clamp_page,
    ensure_gym_access,
    get_current_user,
    get_db,
    get_payment_gateway,
    get_queue,
    require_roles,
    scoped_gym_ids,
)
from gymledger.models import Role
from gymledger.schemas.common import PageMeta
from gymledger.schemas.subscriptions import (
    CheckInIn,
    ConsoleSubscriptionIn,
    OrderOut,
    SubscriptionCreateIn,
    SubscriptionCreatedOut,
    SubscriptionEnvelope,
    SubscriptionList,
    SubscriptionOut,
    SubscriptionPage,
)
from gymledger.services import subscriptions as lifecycle
from gymledger.services.gateway import PaymentGateway
from gymledger.services.queue import JobQueue

router = APIRouter()

staff = require_roles(Role.OWNER, Role.ADMIN)


@router.post("", response_model=SubscriptionCreatedOut, status_code=201)
def create_subscription(
    payload: SubscriptionCreateIn,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    queue: JobQueue = Depends(get_queue),
):
    subscription, order = lifecycle.create_subscription(
        db, gateway, queue, user.id, payload.plan_id, payload.gym_id, source=payload.source.value
    )
    return SubscriptionCreatedOut(
        subscription=SubscriptionOut.model_validate(subscription),
        order=OrderOut(**order.as_dict()),
    )


@router.post("/console", response_model=SubscriptionEnvelope, status_code=201)
def create_console_subscription(
    payload: ConsoleSubscriptionIn,
    actor: CurrentUser = Depends(staff),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_queue),
):
    ensure_gym_access(db, actor, payload.gym_id)
    subscription = lifecycle.create_console_subscription(
        db, queue, payload.user_id, payload.plan_id, payload.gym_id, actor.id
    )
    return SubscriptionEnvelope(subscription=SubscriptionOut.model_validate(subscription))


@router.post("/check-in", response_model=SubscriptionEnvelope)
def check_in(
    payload: CheckInIn,
    actor: CurrentUser = Depends(staff),
    db: Session = Depends(get_db),
):
    ensure_gym_access(db, actor, payload.gym_id)
    subscription = lifecycle.verify_access(db, payload.gym_id, payload.access_code)
    return SubscriptionEnvelope(subscription=SubscriptionOut.model_validate(subscription))


@router.get("/me", response_model=SubscriptionList)
def my_subscriptions(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    subscriptions = lifecycle.list_user_subscriptions(db, user.id)
    return SubscriptionList(data=[SubscriptionOut.model_validate(s) for s in subscriptions])


@router.get("", response_model=SubscriptionPage)
def list_subscriptions(
    gym_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
    user: CurrentUser = Depends(staff),
    db: Session = Depends(get_db),
):
    page, limit = clamp_page(page, limit)
    subscriptions, total = lifecycle.list_subscriptions(
        db, gym_ids=scoped_gym_ids(db, user, gym_id), user_id=user_id, status=status, page=page, limit=limit
    )
    return SubscriptionPage(
        data=[SubscriptionOut.model_validate(s) for s in subscriptions],
        meta=PageMeta.build(total, page, limit),
    )


@router.post("/{subscription_id}/activate", response_model=SubscriptionEnvelope)
def activate_subscription(
    subscription_id: uuid.UUID,
    actor: CurrentUser = Depends(staff),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_queue),
):
    ensure_gym_access(db, actor, lifecycle.get_subscription(db, subscription_id).gym_id)
    subscription = lifecycle.manual_activate(db, queue, subscription_id, actor.id)
    return SubscriptionEnvelope(subscription=SubscriptionOut.model_validate(subscription))


@router.get("/{subscription_id}", response_model=SubscriptionEnvelope)
def get_subscription(
    subscription_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    subscription = lifecycle.get_subscription(db, subscription_id)
    if subscription.user_id != user.id:
        if user.role == Role.USER.value:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
        ensure_gym_access(db, user, subscription.gym_id)
    return SubscriptionEnvelope(subscription=SubscriptionOut.model_validate(subscription))
