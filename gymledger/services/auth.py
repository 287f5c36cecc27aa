from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session

from gymledger.core.cache import TTLCache
from gymledger.core.config import settings
from gymledger.models import Role, User

logger = logging.getLogger(__name__)

# bcrypt caps input at 72 bytes; the register schema limits password length
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# id -> CurrentUser snapshot; mutators of a user must call user_cache.invalidate(id)
user_cache: TTLCache = TTLCache(ttl_seconds=settings.user_cache_ttl_seconds)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(*, subject: str, role: str, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    exp_minutes = expires_minutes or settings.access_token_expire_minutes
    expire = now + timedelta(minutes=exp_minutes)

    payload = {
        "sub": subject,  # user id as a UUID string
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def assign_role(db: Session, user_id: UUID, role: Role) -> User:
    user = db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise LookupError(f"User {user_id} not found")
    if user.role != role.value:
        user.role = role.value
        user.updated_at = datetime.now(timezone.utc)
        db.commit()
        logger.info("user_role_changed", extra={"extra": {"user_id": str(user_id), "role": role.value}})
    user_cache.invalidate(user_id)
    return user
