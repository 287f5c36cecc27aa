"""seed demo gym

Revision ID: 8d4e27b6c5a1
Revises: 3f1c9a2d7b10
Create Date: 2026-10-19 10:20:47.902114

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

import uuid

# revision identifiers, used by Alembic.
revision: str = '8d4e27b6c5a1'
down_revision: Union[str, Sequence[str], None] = '3f1c9a2d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# bcrypt hash of "demo1234", precomputed so the migration does not need passlib
DEMO_PASSWORD_HASH = "$2b$12$C8vYf4v0e9Kj0H2o8g8p1eZ4yW1jvQe9b2u2QnR4m8r2qvJwAqVvW"

DEMO_OWNER_EMAIL = "demo_owner@gymledger.local"
DEMO_GYM_NAME = "Demo Fitness Club"


def upgrade() -> None:
    conn = op.get_bind()

    existing = conn.execute(sa.text("SELECT id FROM users WHERE email = :e"), {"e": DEMO_OWNER_EMAIL}).fetchone()
    if existing:
        return

    users = sa.table(
        "users",
        sa.column("id", sa.Uuid),
        sa.column("email", sa.String),
        sa.column("name", sa.String),
        sa.column("password_hash", sa.String),
        sa.column("role", sa.String),
        sa.column("is_active", sa.Boolean),
    )
    gyms = sa.table(
        "gyms",
        sa.column("id", sa.Uuid),
        sa.column("name", sa.String),
        sa.column("owner_id", sa.Uuid),
        sa.column("is_active", sa.Boolean),
    )
    plans = sa.table(
        "plans",
        sa.column("id", sa.Uuid),
        sa.column("gym_id", sa.Uuid),
        sa.column("name", sa.String),
        sa.column("price", sa.Integer),
        sa.column("currency", sa.String),
        sa.column("duration_value", sa.Integer),
        sa.column("duration_unit", sa.String),
        sa.column("is_active", sa.Boolean),
    )

    owner_id = uuid.uuid4()
    gym_id = uuid.uuid4()

    op.bulk_insert(
        users,
        [
            {
                "id": owner_id,
                "email": DEMO_OWNER_EMAIL,
                "name": "Demo Owner",
                "password_hash": DEMO_PASSWORD_HASH,
                "role": "owner",
                "is_active": True,
            }
        ],
    )
    op.bulk_insert(gyms, [{"id": gym_id, "name": DEMO_GYM_NAME, "owner_id": owner_id, "is_active": True}])
    op.bulk_insert(
        plans,
        [
            {"id": uuid.uuid4(), "gym_id": gym_id, "name": "Monthly", "price": 1000, "currency": "INR",
             "duration_value": 1, "duration_unit": "MONTH", "is_active": True},
            {"id": uuid.uuid4(), "gym_id": gym_id, "name": "Quarterly", "price": 2700, "currency": "INR",
             "duration_value": 3, "duration_unit": "MONTH", "is_active": True},
            {"id": uuid.uuid4(), "gym_id": gym_id, "name": "Annual", "price": 9000, "currency": "INR",
             "duration_value": 1, "duration_unit": "YEAR", "is_active": True},
        ],
    )


def downgrade() -> None:
    op.execute(
        f"DELETE FROM plans WHERE gym_id IN (SELECT id FROM gyms WHERE name = '{DEMO_GYM_NAME}')"
    )
    op.execute(f"DELETE FROM gyms WHERE name = '{DEMO_GYM_NAME}'")
    op.execute(f"DELETE FROM users WHERE email = '{DEMO_OWNER_EMAIL}'")
