"""Accounts table with premium status.

Revision ID: 001_accounts
Revises: None
Create Date: 2024-01-01 00:00:00.000000
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_accounts"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("wallet_address", sa.String(42), nullable=False, unique=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="standard"),
        sa.Column("premium_upgraded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "wallet_address = lower(wallet_address)", name="ck_accounts_wallet_address_lower",
        ),
        sa.CheckConstraint("status IN ('standard', 'premium')", name="ck_accounts_status"),
    )
    op.create_index("ix_accounts_status", "accounts", ["status"])


def downgrade() -> None:
    op.drop_index("ix_accounts_status", table_name="accounts")
    op.drop_table("accounts")
