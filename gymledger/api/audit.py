import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gymledger.api.deps import CurrentUser, clamp_page, ensure_gym_access, get_current_user, get_db, require_roles
from gymledger.models import Role
from gymledger.schemas.audit import AuditLogOut, AuditLogPage
from gymledger.schemas.common import PageMeta
from gymledger.services import audit

router = APIRouter()

admin_only = require_roles(Role.ADMIN)
staff = require_roles(Role.OWNER, Role.ADMIN)


def _page(rows, total: int, page: int, limit: int) -> AuditLogPage:
    return AuditLogPage(data=[AuditLogOut.model_validate(r) for r in rows], meta=PageMeta.build(total, page, limit))


@router.get("", response_model=AuditLogPage)
def all_audit_logs(
    entity: str | None = None,
    action: str | None = None,
    gym_id: uuid.UUID | None = None,
    page: int = 1,
    limit: int = 20,
    _: CurrentUser = Depends(admin_only),
    db: Session = Depends(get_db),
):
    page, limit = clamp_page(page, limit)
    rows, total = audit.list_audit_logs(db, gym_id=gym_id, entity=entity, action=action, page=page, limit=limit)
    return _page(rows, total, page, limit)


@router.get("/me", response_model=AuditLogPage)
def my_audit_logs(
    page: int = 1,
    limit: int = 20,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    page, limit = clamp_page(page, limit)
    rows, total = audit.list_audit_logs(db, actor_id=user.id, page=page, limit=limit)
    return _page(rows, total, page, limit)


@router.get("/gyms/{gym_id}", response_model=AuditLogPage)
def gym_audit_logs(
    gym_id: uuid.UUID,
    page: int = 1,
    limit: int = 20,
    user: CurrentUser = Depends(staff),
    db: Session = Depends(get_db),
):
    ensure_gym_access(db, user, gym_id)
    page, limit = clamp_page(page, limit)
    rows, total = audit.list_audit_logs(db, gym_id=gym_id, page=page, limit=limit)
    return _page(rows, total, page, limit)
