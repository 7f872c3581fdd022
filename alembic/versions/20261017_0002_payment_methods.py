"""Payment methods table

Revision ID: 20261017_0002
Revises: 20261017_0001
Create Date: 2026-10-17 15:00:00
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261017_0002"
down_revision = "20261017_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint(
            "type IN ('bank_transfer','credit_card','debit_card','cash','check','auto_payment','other')",
            name="ck_payment_methods_type",
        ),
    )
    op.create_index("ix_payment_methods_is_active", "payment_methods", ["is_active"])


def downgrade() -> None:
    op.drop_index("ix_payment_methods_is_active", table_name="payment_methods")
    op.drop_table("payment_methods")
