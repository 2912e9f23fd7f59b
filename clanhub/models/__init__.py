from .clan import Clan, Character
from .faction_history import FactionHistory
from .weekly import (
    ClanWeeklyContext,
    ClanHall,
    ClanHallProgress,
    Rhythm,
    ForbiddenKnowledge,
)

__all__ = [
    "Clan",
    "Character",
    "FactionHistory",
    "ClanWeeklyContext",
    "ClanHall",
    "ClanHallProgress",
    "Rhythm",
    "ForbiddenKnowledge",
]
