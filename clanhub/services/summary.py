"""
Weekly summary projection (read side).

Stage close times
-----------------
Stage n (1..6) closes at the earlier of:
  a) the time of its 120th recorded visit, and
  b) the time of the first visit to any higher stage.
Stage 7 never closes.

Attendance
----------
A day counts as attended when, for some stage the member visited that day,
the member's first visit to it that day happened while it was the clan's
active stage: 1 + number of stages closed strictly before that instant.

Public API
----------
stage_close_times(progress)                    -> {stage: datetime}
active_stage_at(close_times, moment)           -> int
attended_dates(progress, close_times, start, end) -> list["YYYY-MM-DD"]
project_weekly_summary(db, clan_id, week_iso)  -> list[CharacterWeekSummary]
"""
from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from clanhub.core.errors import ClanNotFoundError
from clanhub.models.clan import Character, Clan
from clanhub.models.weekly import ClanHall, ClanHallProgress, ForbiddenKnowledge, Rhythm
from clanhub.services.ledger import find_weekly_context
from clanhub.services.reconciler import ZU_VALOR
from clanhub.services.weeks import ensure_utc, parse_week_iso

STAGE_CLOSE_VISITS = 120
LAST_STAGE = 7


class StageVisitLike(Protocol):
    stage: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class KhHistoryItem:
    stage: int
    date: str


@dataclass
class CharacterWeekSummary:
    character_id: int
    name: str
    char_class: Optional[str]
    kh_attended_dates: list[str] = field(default_factory=list)
    kh_history: list[KhHistoryItem] = field(default_factory=list)
    rhythm_valor: int = 0
    zu_circles: int = 0
    zu_valor: int = 0
    kh_valor: int = 0
    total_valor: int = 0


# ---------------------------------------------------------------------------
# Stage rules
# ---------------------------------------------------------------------------

def stage_close_times(progress: Sequence[StageVisitLike]) -> dict[int, datetime]:
    ordered = sorted(progress, key=lambda p: ensure_utc(p.created_at))
    closes: dict[int, datetime] = {}
    for stage in range(1, LAST_STAGE):
        candidates: list[datetime] = []

        same = [p for p in ordered if p.stage == stage]
        if len(same) >= STAGE_CLOSE_VISITS:
            candidates.append(ensure_utc(same[STAGE_CLOSE_VISITS - 1].created_at))

        higher = next((p for p in ordered if p.stage > stage), None)
        if higher is not None:
            candidates.append(ensure_utc(higher.created_at))

        if candidates:
            closes[stage] = min(candidates)
    return closes


def active_stage_at(close_times: dict[int, datetime], moment: datetime) -> int:
    moment = ensure_utc(moment)
    return 1 + sum(
        1 for stage in range(1, LAST_STAGE)
        if stage in close_times and close_times[stage] < moment
    )


def attended_dates(
    progress: Sequence[StageVisitLike],
    close_times: dict[int, datetime],
    start: datetime,
    end: datetime,
) -> list[str]:
    """Days in [start, end] on which the member hit the then-active stage."""
    by_day: dict[str, list[StageVisitLike]] = {}
    for p in sorted(progress, key=lambda p: ensure_utc(p.created_at)):
        by_day.setdefault(ensure_utc(p.created_at).date().isoformat(), []).append(p)

    attended: list[str] = []
    day = ensure_utc(start)
    end = ensure_utc(end)
    while day <= end:
        day_str = day.date().isoformat()
        first_visits: dict[int, StageVisitLike] = {}
        for p in by_day.get(day_str, []):
            first_visits.setdefault(p.stage, p)
        if any(
            stage == active_stage_at(close_times, visit.created_at)
            for stage, visit in first_visits.items()
        ):
            attended.append(day_str)
        day += timedelta(days=1)
    return attended


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def _fold_name(name: str) -> str:
    decomposed = unicodedata.normalize("NFKD", name)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def _sort_key(s: CharacterWeekSummary) -> tuple:
    """
    Total valor descending, then name. Names compare accent- and
    case-insensitively ("Émile" sits between "dora" and "Fritz"), which is
    close to locale collation but not identical: scripts still order by code
    point, so Latin names come before Cyrillic ones.
    """
    name = s.name or ""
    return (-s.total_valor, _fold_name(name), name)



def project_weekly_summary(db: Session, clan_id: int, week_iso: str) -> list[CharacterWeekSummary]:
    """
    One entry per current member, richest week first. A week with no stored
    context yields zero totals for everyone; an unknown clan is an error.
    """
    parse_week_iso(week_iso)
    if db.get(Clan, clan_id) is None:
        raise ClanNotFoundError(clan_id)

    members = (
        db.query(Character)
        .filter(Character.clan_id == clan_id)
        .order_by(Character.id)
        .all()
    )
    context = find_weekly_context(db, clan_id, week_iso)

    rhythm: dict[int, int] = {}
    zu: dict[int, int] = {}
    progress: list[ClanHallProgress] = []
    if context is not None:
        rhythm = {
            r.character_id: r.valor
            for r in db.query(Rhythm).filter(Rhythm.context_id == context.id)
        }
        zu = {
            r.character_id: r.valor
            for r in db.query(ForbiddenKnowledge).filter(ForbiddenKnowledge.context_id == context.id)
        }
        clan_hall = db.query(ClanHall).filter(ClanHall.context_id == context.id).first()
        if clan_hall is not None:
            progress = (
                db.query(ClanHallProgress)
                .filter(ClanHallProgress.clan_hall_id == clan_hall.id)
                .all()
            )

    close_times = stage_close_times(progress)

    summaries: list[CharacterWeekSummary] = []
    for m in members:
        own = sorted(
            (p for p in progress if p.character_id == m.id),
            key=lambda p: ensure_utc(p.created_at),
        )
        rhythm_valor = rhythm.get(m.id, 0)
        zu_valor = zu.get(m.id, 0)
        kh_valor = sum(p.valor for p in own)

        summaries.append(CharacterWeekSummary(
            character_id=m.id,
            name=m.name,
            char_class=m.char_class,
            kh_attended_dates=(
                attended_dates(own, close_times, context.date_start, context.date_end)
                if context is not None else []
            ),
            kh_history=[
                KhHistoryItem(stage=p.stage, date=ensure_utc(p.created_at).isoformat())
                for p in own
            ],
            rhythm_valor=rhythm_valor,
            zu_circles=zu_valor // ZU_VALOR,
            zu_valor=zu_valor,
            kh_valor=kh_valor,
            total_valor=rhythm_valor + zu_valor + kh_valor,
        ))

    summaries.sort(key=_sort_key)
    return summaries
