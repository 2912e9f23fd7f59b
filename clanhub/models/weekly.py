"""
Weekly ledger tables.

ClanWeeklyContext   one row per (clan_id, week_iso); owns the rows below
ClanHall            at most one per context
ClanHallProgress    stage checkpoints, unique per (clan_hall_id, character_id, stage, created_at)
Rhythm              weekly rhythm valor, unique per (context_id, character_id)
ForbiddenKnowledge  weekly ZU valor (7 per circle), unique per (context_id, character_id)

All uniqueness is enforced by constraints: concurrent uploads rely on them
instead of locks.
"""
from datetime import datetime
from sqlalchemy import Boolean, Integer, String, DateTime, ForeignKey, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from clanhub.db.base import Base


class ClanWeeklyContext(Base):
    __tablename__ = "clan_weekly_contexts"
    __table_args__ = (
        UniqueConstraint("clan_id", "week_iso", name="uq_weekly_context_clan_week"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    clan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    week_iso: Mapped[str] = mapped_column(String(8), nullable=False, comment="YYYY-Www")
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    date_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, comment="Monday 00:00:00.000 UTC"
    )
    date_end: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, comment="Sunday 23:59:59.999 UTC"
    )


class ClanHall(Base):
    __tablename__ = "clan_halls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    context_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clan_weekly_contexts.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )


class ClanHallProgress(Base):
    __tablename__ = "clan_hall_progress"
    __table_args__ = (
        UniqueConstraint(
            "clan_hall_id", "character_id", "stage", "created_at",
            name="uq_clan_hall_progress_visit",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    clan_hall_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clan_halls.id", ondelete="CASCADE"), nullable=False, index=True
    )
    character_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("characters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stage: Mapped[int] = mapped_column(Integer, nullable=False)
    valor: Mapped[int] = mapped_column(Integer, nullable=False)
    gold: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        comment="time of the earliest recorded visit, not of the upload",
    )
    manual: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false(),
        comment="set by a manual correction; ingestion never moves it",
    )


class Rhythm(Base):
    __tablename__ = "rhythm"
    __table_args__ = (
        UniqueConstraint("context_id", "character_id", name="uq_rhythm_context_character"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    context_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clan_weekly_contexts.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    character_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("characters.id", ondelete="CASCADE"), nullable=False
    )
    valor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ForbiddenKnowledge(Base):
    __tablename__ = "forbidden_knowledge"
    __table_args__ = (
        UniqueConstraint(
            "context_id", "character_id", name="uq_forbidden_knowledge_context_character"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    context_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clan_weekly_contexts.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    character_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("characters.id", ondelete="CASCADE"), nullable=False
    )
    valor: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
