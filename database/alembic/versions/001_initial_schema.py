"""Initial schema: stock_alerts with trigger_instant index.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "stock_alerts",
        sa.Column("symbol", sa.Text(), primary_key=True),
        sa.Column("trigger_price", sa.Numeric(), nullable=False),
        sa.Column("trigger_instant", sa.DateTime(timezone=True), nullable=False),
        sa.Column("occurrence_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_updated_instant", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scan_name", sa.Text(), nullable=True),
        sa.Column("scan_url", sa.Text(), nullable=True),
        sa.Column("alert_name", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_stock_alerts_trigger_instant_symbol",
        "stock_alerts",
        ["trigger_instant", "symbol"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_stock_alerts_trigger_instant_symbol", "stock_alerts")
    op.drop_table("stock_alerts")
