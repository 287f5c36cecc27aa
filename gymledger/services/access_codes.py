from __future__ import annotations

import secrets
import string

from sqlalchemy import select
from sqlalchemy.orm import Session

from gymledger.core.errors import AccessCodeUnavailable
from gymledger.models import Subscription

ACCESS_CODE_LENGTH = 8
ALPHABET = string.ascii_uppercase + string.digits


def random_code(length: int = ACCESS_CODE_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def generate_access_code(db: Session, max_attempts: int = 10) -> str:
    """Return a code not held by any existing subscription.

    The unique constraint on ``subscriptions.access_code`` still guards the
    window between this check and the insert.
    """
    for _ in range(max_attempts):
        code = random_code()
        taken = db.scalar(select(Subscription.id).where(Subscription.access_code == code))
        if not taken:
            return code
    raise AccessCodeUnavailable()
