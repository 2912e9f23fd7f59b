"""
Weekly ledger writer.

Public API
----------
get_or_create_weekly_context(db, clan_id, week_iso)  -> (context, clan_hall)
persist_history_records(db, clan_id, records, ...)   -> processed count (commits per chunk)
load_stored_lines(db, clan_id, date_from, date_to)   -> list[StoredLine]
mark_ledgered(db, clan_id, record_ids)               -> None   (flush only)
unledgered_span(db, clan_id)                         -> (first, last) or None
write_week_contributions(db, clan_id, week)          -> context (additive, flush only)
apply_manual_override(db, context, clan_hall, ...)   -> None   (replacing, flush only)
ensure_weekly_contexts(db, now)                      -> EnsureResult

Every write goes through a unique key. Automatic ingestion adds to rhythm
and ZU valor (a negative delta retracts, floored at zero); a manual override
replaces them and replaces the character's whole clan-hall visit list.
Stage rows written by a manual override are flagged `manual`; ingestion
never moves or adds to a stage the character has a manual row for.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from clanhub.core.errors import HistoryPersistenceError
from clanhub.models.clan import Clan
from clanhub.models.faction_history import FactionHistory
from clanhub.models.weekly import (
    ClanHall,
    ClanHallProgress,
    ClanWeeklyContext,
    ForbiddenKnowledge,
    Rhythm,
)
from clanhub.services.faction_history_parser import RawLogRecord
from clanhub.services.reconciler import (
    ZU_VALOR,
    StageVisit,
    StoredLine,
    WeekContributions,
    stage_values,
)
from clanhub.services.weeks import ensure_utc, get_week_iso, parse_week_iso, week_bounds

log = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass
class EnsureResult:
    week_iso: str
    created: int
    existing: int


# ---------------------------------------------------------------------------
# Idempotency helpers
# ---------------------------------------------------------------------------

def _get_or_create(
    db: Session,
    model: type,
    defaults: Optional[dict[str, Any]] = None,
    **keys: Any,
) -> tuple[Any, bool]:
    """
    Return (row, created) for the row matching `keys`.
    The unique constraint is the final guard: if a concurrent writer inserts
    the same key first, the savepoint is rolled back and their row is used.
    """
    row = db.query(model).filter_by(**keys).first()
    if row is not None:
        return row, False

    savepoint = db.begin_nested()
    try:
        row = model(**keys, **(defaults or {}))
        db.add(row)
        db.flush()
        savepoint.commit()
        return row, True
    except IntegrityError:
        savepoint.rollback()
        return db.query(model).filter_by(**keys).one(), False


def _visit_key(stage: int, created_at: datetime) -> str:
    return f"{stage}_{ensure_utc(created_at).isoformat()}"


# ---------------------------------------------------------------------------
# Weekly context
# ---------------------------------------------------------------------------

def get_or_create_weekly_context(
    db: Session, clan_id: int, week_iso: str
) -> tuple[ClanWeeklyContext, ClanHall]:
    _, week_number = parse_week_iso(week_iso)
    start, end = week_bounds(week_iso)

    context, created = _get_or_create(
        db,
        ClanWeeklyContext,
        defaults={"week_number": week_number, "date_start": start, "date_end": end},
        clan_id=clan_id,
        week_iso=week_iso,
    )
    if created:
        log.debug("Created weekly context clan=%s week=%s", clan_id, week_iso)

    clan_hall, _ = _get_or_create(db, ClanHall, context_id=context.id)
    return context, clan_hall


def find_weekly_context(db: Session, clan_id: int, week_iso: str) -> Optional[ClanWeeklyContext]:
    return (
        db.query(ClanWeeklyContext)
        .filter(ClanWeeklyContext.clan_id == clan_id, ClanWeeklyContext.week_iso == week_iso)
        .first()
    )


def ensure_weekly_contexts(db: Session, now: Optional[datetime] = None) -> EnsureResult:
    """Make sure every clan has a context (and clan hall) for the current week."""
    week_iso = get_week_iso(now or datetime.now(tz=timezone.utc))
    result = EnsureResult(week_iso=week_iso, created=0, existing=0)

    for (clan_id,) in db.query(Clan.id).order_by(Clan.id).all():
        existed = find_weekly_context(db, clan_id, week_iso) is not None
        get_or_create_weekly_context(db, clan_id, week_iso)
        if existed:
            result.existing += 1
        else:
            result.created += 1

    db.commit()
    log.info(
        "Weekly contexts for %s: %d created, %d already present",
        week_iso, result.created, result.existing,
    )
    return result


# ---------------------------------------------------------------------------
# Raw history rows
# ---------------------------------------------------------------------------

def _upsert_chunk(db: Session, clan_id: int, chunk: list[RawLogRecord]) -> None:
    existing = {
        row.record_id: row
        for row in db.query(FactionHistory).filter(
            FactionHistory.clan_id == clan_id,
            FactionHistory.record_id.in_([r.id for r in chunk]),
        )
    }
    for r in chunk:
        row = existing.get(r.id)
        if row is not None:
            row.action = r.action
            row.description = r.description
            continue
        row = FactionHistory(
            clan_id=clan_id,
            record_id=r.id,
            event_type=r.event_type,
            actor_id=r.actor_id,
            timestamp=r.timestamp,
            date=r.date,
            param0=r.params[0],
            param1=r.params[1],
            param2=r.params[2],
            action=r.action,
            description=r.description,
        )
        db.add(row)
        existing[r.id] = row
    db.flush()


def _commit_chunk(db: Session, clan_id: int, chunk: list[RawLogRecord]) -> None:
    try:
        _upsert_chunk(db, clan_id, chunk)
        db.commit()
    except IntegrityError:
        # another upload inserted some of these ids after we looked; the
        # second pass sees them and turns into updates
        db.rollback()
        _upsert_chunk(db, clan_id, chunk)
        db.commit()


def persist_history_records(
    db: Session,
    clan_id: int,
    records: list[RawLogRecord],
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_progress: Optional[Callable[[int], None]] = None,
) -> int:
    """
    Upsert raw rows in chunks, one transaction per chunk.
    Chunks already committed stay committed if a later one fails.
    """
    processed = 0
    for i in range(0, len(records), batch_size):
        chunk = records[i:i + batch_size]
        try:
            _commit_chunk(db, clan_id, chunk)
        except SQLAlchemyError as exc:
            db.rollback()
            raise HistoryPersistenceError(
                f"Failed to store history records {i}..{i + len(chunk) - 1}: {exc}",
                processed=processed,
            ) from exc
        processed += len(chunk)
        log.debug("clan=%s stored %d/%d history records", clan_id, processed, len(records))
        if on_progress is not None:
            on_progress(processed)
    return processed


def load_stored_lines(
    db: Session, clan_id: int, date_from: datetime, date_to: datetime
) -> list[StoredLine]:
    """Stored rows in range, as the reconciler consumes them."""
    rows = (
        db.query(
            FactionHistory.record_id,
            FactionHistory.actor_id,
            FactionHistory.timestamp,
            FactionHistory.event_type,
            FactionHistory.param0,
            FactionHistory.ledgered,
        )
        .filter(
            FactionHistory.clan_id == clan_id,
            FactionHistory.date >= date_from,
            FactionHistory.date <= date_to,
        )
        .order_by(FactionHistory.record_id)
        .all()
    )
    return [
        StoredLine(
            record_id=record_id, actor_id=actor_id, timestamp=timestamp,
            event_type=event_type, amount=amount, ledgered=bool(ledgered),
        )
        for record_id, actor_id, timestamp, event_type, amount, ledgered in rows
    ]


def mark_ledgered(db: Session, clan_id: int, record_ids: list[int]) -> None:
    """Flag rows as folded into the ledger (flush only)."""
    for i in range(0, len(record_ids), DEFAULT_BATCH_SIZE):
        db.query(FactionHistory).filter(
            FactionHistory.clan_id == clan_id,
            FactionHistory.record_id.in_(record_ids[i:i + DEFAULT_BATCH_SIZE]),
        ).update({FactionHistory.ledgered: True}, synchronize_session=False)
    db.flush()


def unledgered_span(db: Session, clan_id: int) -> Optional[tuple[datetime, datetime]]:
    """(earliest, latest) date of rows a failed ledger write left behind."""
    first, last = (
        db.query(func.min(FactionHistory.date), func.max(FactionHistory.date))
        .filter(FactionHistory.clan_id == clan_id, FactionHistory.ledgered.is_(False))
        .one()
    )
    if first is None:
        return None
    return ensure_utc(first), ensure_utc(last)


# ---------------------------------------------------------------------------
# Automatic (additive) ledger writes
# ---------------------------------------------------------------------------

def _increment_valor(db: Session, model: type, context_id: int, character_id: int, delta: int) -> None:
    if delta == 0:
        return
    if delta < 0:
        # retraction: only existing rows, never below zero
        db.query(model).filter(
            model.context_id == context_id, model.character_id == character_id
        ).update(
            {model.valor: case((model.valor + delta < 0, 0), else_=model.valor + delta)},
            synchronize_session="fetch",
        )
        return
    row, created = _get_or_create(
        db, model, defaults={"valor": delta},
        context_id=context_id, character_id=character_id,
    )
    if not created:
        db.query(model).filter(model.id == row.id).update(
            {model.valor: model.valor + delta}, synchronize_session="fetch"
        )


def _upsert_stage_visit(db: Session, clan_hall_id: int, character_id: int, visit: StageVisit) -> None:
    created_at = datetime.fromtimestamp(visit.timestamp, tz=timezone.utc)
    rows = (
        db.query(ClanHallProgress)
        .filter(
            ClanHallProgress.clan_hall_id == clan_hall_id,
            ClanHallProgress.character_id == character_id,
            ClanHallProgress.stage == visit.stage,
        )
        .all()
    )
    if any(row.manual for row in rows):
        return
    for row in rows:
        if ensure_utc(row.created_at) == created_at:
            row.valor, row.gold = visit.valor, visit.gold
            return

    if rows:
        # the week already has this stage for the character; only an earlier
        # sighting moves it
        earliest = min(rows, key=lambda r: ensure_utc(r.created_at))
        if created_at < ensure_utc(earliest.created_at):
            earliest.created_at = created_at
            earliest.valor, earliest.gold = visit.valor, visit.gold
        return

    _get_or_create(
        db, ClanHallProgress,
        defaults={"valor": visit.valor, "gold": visit.gold},
        clan_hall_id=clan_hall_id,
        character_id=character_id,
        stage=visit.stage,
        created_at=created_at,
    )


def write_week_contributions(db: Session, clan_id: int, week: WeekContributions) -> ClanWeeklyContext:
    context, clan_hall = get_or_create_weekly_context(db, clan_id, week.week_iso)

    for character_id, valor in week.rhythm.items():
        _increment_valor(db, Rhythm, context.id, character_id, valor)
    for character_id, valor in week.forbidden_knowledge.items():
        _increment_valor(db, ForbiddenKnowledge, context.id, character_id, valor)
    for (character_id, _stage), visit in week.stages.items():
        _upsert_stage_visit(db, clan_hall.id, character_id, visit)

    db.flush()
    return context


# ---------------------------------------------------------------------------
# Manual (replacing) ledger writes
# ---------------------------------------------------------------------------

def _set_valor(db: Session, model: type, context_id: int, character_id: int, valor: int) -> None:
    row, created = _get_or_create(
        db, model, defaults={"valor": valor},
        context_id=context_id, character_id=character_id,
    )
    if not created:
        row.valor = valor


def _replace_stage_visits(
    db: Session,
    context: ClanWeeklyContext,
    clan_hall: ClanHall,
    character_id: int,
    kh_records: Iterable[tuple[int, int]],
) -> None:
    start = ensure_utc(context.date_start)
    targets: dict[str, tuple[int, datetime]] = {}
    for stage, day_index in kh_records:
        created_at = start + timedelta(days=day_index)
        targets[_visit_key(stage, created_at)] = (stage, created_at)

    existing = (
        db.query(ClanHallProgress)
        .filter(
            ClanHallProgress.clan_hall_id == clan_hall.id,
            ClanHallProgress.character_id == character_id,
        )
        .all()
    )
    for row in existing:
        if _visit_key(row.stage, row.created_at) not in targets:
            db.delete(row)
    db.flush()

    for stage, created_at in targets.values():
        valor, gold = stage_values(stage)
        row, created = _get_or_create(
            db, ClanHallProgress,
            defaults={"valor": valor, "gold": gold, "manual": True},
            clan_hall_id=clan_hall.id,
            character_id=character_id,
            stage=stage,
            created_at=created_at,
        )
        if not created:
            row.valor, row.gold = valor, gold
            row.manual = True


def apply_manual_override(
    db: Session,
    context: ClanWeeklyContext,
    clan_hall: ClanHall,
    character_id: int,
    kh_records: Optional[Iterable[tuple[int, int]]] = None,
    rhythm_valor: Optional[int] = None,
    zu_circles: Optional[int] = None,
) -> None:
    """
    Overwrite a character's weekly numbers. Omitted fields are left alone;
    `kh_records` ((stage, day_index) pairs) is a full replacement of the
    character's clan-hall visits for the week.
    """
    if kh_records is not None:
        _replace_stage_visits(db, context, clan_hall, character_id, kh_records)
    if rhythm_valor is not None:
        _set_valor(db, Rhythm, context.id, character_id, rhythm_valor)
    if zu_circles is not None:
        _set_valor(db, ForbiddenKnowledge, context.id, character_id, zu_circles * ZU_VALOR)
    db.flush()
