"""accounts and campaigns ledger tables

Revision ID: 001_ledger
Revises:
Create Date: 2026-03-02
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, server_default=""),
        sa.Column("credits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("available_hits", sa.Integer, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("target_url", sa.String, nullable=True),
        sa.Column("vendor", sa.String(32), nullable=False, server_default="sparktraffic"),
        sa.Column("vendor_project_id", sa.String(128), nullable=True),
        sa.Column("state", sa.String(16), nullable=False, server_default="created"),
        sa.Column("pause_reason", sa.String(32), nullable=True),
        sa.Column("prior_state", sa.String(16), nullable=True),
        sa.Column("archived_at", sa.DateTime, nullable=True),
        sa.Column("delete_eligible_at", sa.DateTime, nullable=True),
        sa.Column("total_hits_counted", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_visits_counted", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_stats_check", sa.DateTime, nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_campaigns_account_id", "campaigns", ["account_id"])
    op.create_index("ix_campaigns_vendor_project_id", "campaigns", ["vendor_project_id"])
    op.create_index("ix_campaigns_state", "campaigns", ["state"])
    op.create_index("ix_campaigns_archived_at", "campaigns", ["archived_at"])


def downgrade() -> None:
    op.drop_index("ix_campaigns_archived_at", table_name="campaigns")
    op.drop_index("ix_campaigns_state", table_name="campaigns")
    op.drop_index("ix_campaigns_vendor_project_id", table_name="campaigns")
    op.drop_index("ix_campaigns_account_id", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_table("accounts")
