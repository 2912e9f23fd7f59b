from datetime import datetime
from sqlalchemy import Integer, String, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from clanhub.db.base import Base


class Clan(Base):
    __tablename__ = "clans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Character(Base):
    """
    A player character. Membership is the `clan_id` column: a character
    whose clan_id equals a clan's id is a current member of that clan.
    """

    __tablename__ = "characters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    char_class: Mapped[str | None] = mapped_column(String(32), nullable=True)
    game_char_id: Mapped[int | None] = mapped_column(
        Integer, nullable=True, index=True,
        comment="role id used by the game server in faction history logs",
    )
    clan_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("clans.id", ondelete="SET NULL"), nullable=True, index=True
    )
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
