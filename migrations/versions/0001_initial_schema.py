"""initial schema: clans, characters, faction history, weekly ledgers

Revision ID: 0001
Revises:
Create Date: 2025-01-06 00:00:00.000000

Every ledger table carries the unique constraint its upserts rely on;
concurrent uploads for the same clan are made safe by these alone.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- clans ---
    op.create_table(
        "clans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_clans_id", "clans", ["id"])

    # --- characters ---
    op.create_table(
        "characters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("char_class", sa.String(32), nullable=True),
        sa.Column("game_char_id", sa.Integer(), nullable=True),
        sa.Column("clan_id", sa.Integer(), sa.ForeignKey("clans.id", ondelete="SET NULL"), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_characters_id", "characters", ["id"])
    op.create_index("ix_characters_game_char_id", "characters", ["game_char_id"])
    op.create_index("ix_characters_clan_id", "characters", ["clan_id"])
    op.create_index("ix_characters_user_id", "characters", ["user_id"])

    # --- faction_history ---
    op.create_table(
        "faction_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("clan_id", sa.Integer(), sa.ForeignKey("clans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.Integer(), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("param0", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("param1", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("param2", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("clan_id", "record_id", name="uq_faction_history_clan_record"),
    )
    op.create_index("ix_faction_history_id", "faction_history", ["id"])
    op.create_index("ix_faction_history_clan_id", "faction_history", ["clan_id"])
    op.create_index("ix_faction_history_actor_id", "faction_history", ["actor_id"])
    op.create_index("ix_faction_history_date", "faction_history", ["date"])

    # --- clan_weekly_contexts ---
    op.create_table(
        "clan_weekly_contexts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("clan_id", sa.Integer(), sa.ForeignKey("clans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("week_iso", sa.String(8), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("date_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("date_end", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("clan_id", "week_iso", name="uq_weekly_context_clan_week"),
    )
    op.create_index("ix_clan_weekly_contexts_id", "clan_weekly_contexts", ["id"])
    op.create_index("ix_clan_weekly_contexts_clan_id", "clan_weekly_contexts", ["clan_id"])

    # --- clan_halls ---
    op.create_table(
        "clan_halls",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "context_id", sa.Integer(),
            sa.ForeignKey("clan_weekly_contexts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("context_id"),
    )
    op.create_index("ix_clan_halls_id", "clan_halls", ["id"])

    # --- clan_hall_progress ---
    op.create_table(
        "clan_hall_progress",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("clan_hall_id", sa.Integer(), sa.ForeignKey("clan_halls.id", ondelete="CASCADE"), nullable=False),
        sa.Column("character_id", sa.Integer(), sa.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stage", sa.Integer(), nullable=False),
        sa.Column("valor", sa.Integer(), nullable=False),
        sa.Column("gold", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "clan_hall_id", "character_id", "stage", "created_at",
            name="uq_clan_hall_progress_visit",
        ),
    )
    op.create_index("ix_clan_hall_progress_id", "clan_hall_progress", ["id"])
    op.create_index("ix_clan_hall_progress_clan_hall_id", "clan_hall_progress", ["clan_hall_id"])
    op.create_index("ix_clan_hall_progress_character_id", "clan_hall_progress", ["character_id"])

    # --- rhythm / forbidden_knowledge ---
    for table, constraint in (
        ("rhythm", "uq_rhythm_context_character"),
        ("forbidden_knowledge", "uq_forbidden_knowledge_context_character"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column(
                "context_id", sa.Integer(),
                sa.ForeignKey("clan_weekly_contexts.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("character_id", sa.Integer(), sa.ForeignKey("characters.id", ondelete="CASCADE"), nullable=False),
            sa.Column("valor", sa.Integer(), nullable=False, server_default="0"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("context_id", "character_id", name=constraint),
        )
        op.create_index(f"ix_{table}_id", table, ["id"])
        op.create_index(f"ix_{table}_context_id", table, ["context_id"])


def downgrade() -> None:
    op.drop_table("forbidden_knowledge")
    op.drop_table("rhythm")
    op.drop_table("clan_hall_progress")
    op.drop_table("clan_halls")
    op.drop_table("clan_weekly_contexts")
    op.drop_table("faction_history")
    op.drop_table("characters")
    op.drop_table("clans")
