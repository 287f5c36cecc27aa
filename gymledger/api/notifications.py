import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gymledger.api.deps import CurrentUser, clamp_page, get_current_user, get_db
from gymledger.models import Role
from gymledger.schemas.common import PageMeta
from gymledger.schemas.notifications import MarkedReadOut, NotificationOut, NotificationPage
from gymledger.services import notifications as inbox

router = APIRouter()


@router.get("", response_model=NotificationPage)
def list_notifications(
    user_id: uuid.UUID | None = None,
    type: str | None = None,
    is_read: bool | None = None,
    page: int = 1,
    limit: int = 10,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # only admins may read another user's inbox
    if user.role != Role.ADMIN.value:
        user_id = user.id

    page, limit = clamp_page(page, limit)
    rows, total = inbox.list_notifications(db, user_id=user_id, type=type, is_read=is_read, page=page, limit=limit)
    return NotificationPage(data=[NotificationOut.model_validate(n) for n in rows], meta=PageMeta.build(total, page, limit))


@router.patch("/read-all", response_model=MarkedReadOut)
def mark_all_read(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return MarkedReadOut(updated=inbox.mark_all_read(db, user.id))


@router.patch("/{notification_id}/read", response_model=NotificationOut)
def mark_read(notification_id: uuid.UUID, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return inbox.mark_read(db, notification_id, user.id)
