"""
FactionHistory: one row per decoded faction-log record.

(clan_id, record_id) is unique: re-uploading a file refreshes
action/description on existing rows instead of duplicating them.
`actor_id` is the game server's role id, not a Character primary key.
`ledgered` turns true once the row has been folded into the weekly ledger;
rows left false by a failed ledger write are picked up by the next upload.
"""
from datetime import datetime
from sqlalchemy import Boolean, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from clanhub.db.base import Base


class FactionHistory(Base):
    __tablename__ = "faction_history"
    __table_args__ = (
        UniqueConstraint("clan_id", "record_id", name="uq_faction_history_clan_record"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    clan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("clans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    record_id: Mapped[int] = mapped_column(Integer, nullable=False)
    event_type: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    timestamp: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="raw int32 unix seconds from the log"
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    param0: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    param1: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    param2: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ledgered: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
