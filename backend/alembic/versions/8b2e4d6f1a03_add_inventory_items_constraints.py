"""add inventory_items constraints (0 <= quantity_gone <= quantity)

Revision ID: 8b2e4d6f1a03
Revises: 3f1a9c2b7d10
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8b2e4d6f1a03"
down_revision: Union[str, Sequence[str], None] = "3f1a9c2b7d10"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TABLE_NAME = "inventory_items"

CHECKS = (
    ("ck_inventory_qty_nonneg", "quantity >= 0"),
    ("ck_inventory_gone_nonneg", "quantity_gone >= 0"),
    ("ck_inventory_gone_le_qty", "quantity_gone <= quantity"),
)


def _add_check_if_missing(constraint_name: str, check_sql: str) -> None:
    # Idempotent Postgres
    op.execute(
        f"""
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1
                FROM pg_constraint c
                JOIN pg_class t ON t.oid = c.conrelid
                WHERE t.relname = '{TABLE_NAME}'
                  AND c.conname = '{constraint_name}'
            ) THEN
                ALTER TABLE {TABLE_NAME}
                ADD CONSTRAINT {constraint_name}
                CHECK ({check_sql});
            END IF;
        END $$;
        """
    )


def upgrade() -> None:
    # Pas de correction silencieuse : des soldes incohérents doivent faire échouer la migration
    for name, check_sql in CHECKS:
        _add_check_if_missing(name, check_sql)


def downgrade() -> None:
    for name, _ in reversed(CHECKS):
        op.execute(f"ALTER TABLE {TABLE_NAME} DROP CONSTRAINT IF EXISTS {name};")
