from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.orm import Session

from gymledger.core.db import get_db
from gymledger.models import Gym, Role, User
from gymledger.services.auth import decode_token, user_cache
from gymledger.services.gateway import PaymentGateway, get_gateway
from gymledger.services.queue import JobQueue, get_job_queue

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


@dataclass(frozen=True)
class CurrentUser:
    id: uuid.UUID
    email: str
    role: str
    is_active: bool
    updated_at: datetime | None


def get_payment_gateway() -> PaymentGateway:
    return get_gateway()


def get_queue() -> JobQueue:
    return get_job_queue()


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> CurrentUser:
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid authentication credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_token(token)
        sub = payload.get("sub")
        if not sub:
            raise credentials_exc
        user_id = uuid.UUID(sub)
    except (JWTError, ValueError):
        raise credentials_exc

    # staleness check: a user modified after caching is reloaded
    modified_at = db.scalar(select(User.updated_at).where(User.id == user_id))
    if modified_at is None:
        user_cache.invalidate(user_id)
        raise credentials_exc

    current = user_cache.get(user_id, modified_at=modified_at)
    if current is None:
        user = db.scalar(select(User).where(User.id == user_id))
        if user is None:
            raise credentials_exc
        current = CurrentUser(
            id=user.id, email=user.email, role=user.role, is_active=user.is_active, updated_at=user.updated_at
        )
        user_cache.set(user_id, current, modified_at=user.updated_at)

    if not current.is_active:
        raise credentials_exc
    return current


def require_roles(*roles: Role):
    allowed = {r.value for r in roles}

    def guard(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
        return user

    return guard


def ensure_gym_access(db: Session, user: CurrentUser, gym_id: uuid.UUID) -> None:
    """Owners may only act on their own gyms; admins on any."""
    if user.role == Role.ADMIN.value:
        return
    owner_id = db.scalar(select(Gym.owner_id).where(Gym.id == gym_id))
    if owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized for this gym")


def scoped_gym_ids(db: Session, user: CurrentUser, gym_id: uuid.UUID | None = None) -> list[uuid.UUID] | None:
    """Gym filter for list endpoints: None means every gym (admins only)."""
    if gym_id is not None:
        ensure_gym_access(db, user, gym_id)
        return [gym_id]
    if user.role == Role.ADMIN.value:
        return None
    return list(db.scalars(select(Gym.id).where(Gym.owner_id == user.id)))


def clamp_page(page: int, limit: int, max_limit: int = 100) -> tuple[int, int]:
    return max(1, int(page)), max(1, min(int(limit), max_limit))
