"""add faction_history.ledgered and clan_hall_progress.manual

Revision ID: 0002
Revises: 0001
Create Date: 2025-02-03

faction_history.ledgered marks rows already folded into the weekly ledger.
Rows that exist before this revision were ledgered by the upload that
stored them, so they are backfilled as true; new rows default to false.

clan_hall_progress.manual marks stage rows written by a manual correction.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "faction_history",
        sa.Column("ledgered", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.alter_column("faction_history", "ledgered", server_default=sa.false())
    op.create_index(
        "ix_faction_history_clan_ledgered", "faction_history", ["clan_id", "ledgered"]
    )

    op.add_column(
        "clan_hall_progress",
        sa.Column("manual", sa.Boolean(), nullable=False, server_default=sa.false()),
    )


def downgrade() -> None:
    op.drop_column("clan_hall_progress", "manual")
    op.drop_index("ix_faction_history_clan_ledgered", table_name="faction_history")
    op.drop_column("faction_history", "ledgered")
