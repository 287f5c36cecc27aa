import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gymledger.api.deps import CurrentUser, ensure_gym_access, get_db, get_queue, require_roles, scoped_gym_ids
from gymledger.models import Role
from gymledger.schemas.settlements import (
    SettlementCreateIn,
    SettlementOut,
    SettlementProcessIn,
    UnsettledAmountOut,
    UnsettledPaymentOut,
    UnsettledSummaryOut,
)
from gymledger.services import settlements as aggregator
from gymledger.services.queue import JobQueue

router = APIRouter()

admin_only = require_roles(Role.ADMIN)
staff = require_roles(Role.OWNER, Role.ADMIN)


@router.get("", response_model=list[SettlementOut])
def list_settlements(
    gym_id: uuid.UUID | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
    user: CurrentUser = Depends(staff),
    db: Session = Depends(get_db),
):
    limit = max(1, min(int(limit), 200))
    offset = max(0, int(offset))

    gym_ids = scoped_gym_ids(db, user, gym_id)
    return aggregator.list_settlements(db, gym_ids=gym_ids, status=status, limit=limit, offset=offset)


@router.get("/unsettled-summary", response_model=list[UnsettledSummaryOut])
def unsettled_summary(_: CurrentUser = Depends(admin_only), db: Session = Depends(get_db)):
    return aggregator.get_unsettled_summary(db)


@router.get("/unsettled", response_model=UnsettledAmountOut)
def unsettled_amount(gym_id: uuid.UUID, user: CurrentUser = Depends(staff), db: Session = Depends(get_db)):
    ensure_gym_access(db, user, gym_id)
    payments = aggregator.get_unsettled_payments(db, gym_id)
    return UnsettledAmountOut(
        amount=sum(p.amount for p in payments),
        count=len(payments),
        payments=[UnsettledPaymentOut.model_validate(p) for p in payments],
    )


@router.get("/{settlement_id}", response_model=SettlementOut)
def get_settlement(settlement_id: uuid.UUID, user: CurrentUser = Depends(staff), db: Session = Depends(get_db)):
    settlement = aggregator.get_settlement(db, settlement_id)
    ensure_gym_access(db, user, settlement.gym_id)
    return settlement


@router.post("", response_model=SettlementOut, status_code=201)
def create_settlement(
    payload: SettlementCreateIn,
    admin: CurrentUser = Depends(admin_only),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_queue),
):
    return aggregator.create_settlement(db, queue, payload.gym_id, actor_id=admin.id)


@router.post("/{settlement_id}/process", response_model=SettlementOut)
def process_settlement(
    settlement_id: uuid.UUID,
    payload: SettlementProcessIn,
    admin: CurrentUser = Depends(admin_only),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_queue),
):
    return aggregator.process_settlement(
        db, queue, settlement_id, payload.transaction_id, payload.notes, actor_id=admin.id
    )
