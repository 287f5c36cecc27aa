from sqlalchemy import select

from gymledger.core.config import settings
from gymledger.core.db import SessionLocal
from gymledger.core.logging import init_logging
from gymledger.models import Role, User
from gymledger.services.auth import assign_role

logger = init_logging("gymledger-init-admin", settings.log_level)


def main() -> None:
    """Promote the user registered under ADMIN_EMAIL to the admin role."""
    if not settings.admin_email:
        logger.warning("ADMIN_EMAIL not set, nothing to do")
        return

    db = SessionLocal()
    try:
        user = db.scalar(select(User).where(User.email == settings.admin_email))
        if not user:
            raise RuntimeError(f"User {settings.admin_email} not found. Register it first via /auth/register.")
        if user.role == Role.ADMIN.value:
            logger.info("admin already present", extra={"extra": {"user_id": str(user.id)}})
            return
        assign_role(db, user.id, Role.ADMIN)
        logger.info("admin role granted", extra={"extra": {"user_id": str(user.id)}})
    finally:
        db.close()


if __name__ == "__main__":
    main()
