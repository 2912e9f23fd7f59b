"""
Faction history service: upload orchestration and weekly stats edits.

Public API
----------
submit_upload(db, tracker, user_id, clan_id, data)  -> UploadTask  (sync checks only)
process_history_upload(task_id, clan_id, data, ...) -> None        (detached job)
get_upload_task(tracker, task_id)                   -> UploadTask
update_weekly_stats(db, clan_id, week_iso, ...)     -> list[CharacterWeekSummary]
list_history(db, clan_id, limit, offset)            -> (total, rows)

The detached job never raises: decode and persistence failures end up on
the task as status ERROR with the number of records already committed.
Rows whose ledger update failed stay flagged unledgered and are folded in
by the next upload of the same clan.
"""
from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from clanhub.core.config import settings
from clanhub.core.errors import (
    CharacterNotInClanError,
    ClanHubException,
    ClanNotFoundError,
    HistoryDecodeError,
    HistoryPersistenceError,
    NotClanMemberError,
    UploadTaskNotFoundError,
    UploadTooLargeError,
)
from clanhub.db.base import SessionFactory
from clanhub.models.clan import Character, Clan
from clanhub.models.faction_history import FactionHistory
from clanhub.services.faction_history_parser import (
    EMPTY_HEADER,
    HEADER,
    HEADER_SIZE,
    RECORD_SIZE,
    RawLogRecord,
    parse_faction_history,
)
from clanhub.services.ledger import (
    apply_manual_override,
    get_or_create_weekly_context,
    load_stored_lines,
    mark_ledgered,
    persist_history_records,
    unledgered_span,
    write_week_contributions,
)
from clanhub.services.reconciler import (
    ReconcileSummary,
    reconcile,
)
from clanhub.services.summary import CharacterWeekSummary, project_weekly_summary
from clanhub.services.task_tracker import TaskTracker, UploadTask
from clanhub.services.weeks import parse_week_iso, weeks_spanning

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_clan(db: Session, clan_id: int) -> Clan:
    clan = db.get(Clan, clan_id)
    if clan is None:
        raise ClanNotFoundError(clan_id)
    return clan


def _member_map(db: Session, clan_id: int) -> dict[int, int]:
    """game role id -> Character id, current members only."""
    rows = (
        db.query(Character.game_char_id, Character.id)
        .filter(Character.clan_id == clan_id, Character.game_char_id.isnot(None))
        .all()
    )
    return {game_id: character_id for game_id, character_id in rows}


def _decode(data: bytes) -> list[RawLogRecord]:
    if not data:
        raise HistoryDecodeError("History file is empty.", size=0)
    if len(data) < RECORD_SIZE:
        is_empty_marker = (
            len(data) >= HEADER_SIZE and HEADER.unpack_from(data, 0) == EMPTY_HEADER
        )
        if not is_empty_marker:
            raise HistoryDecodeError(
                f"History file is {len(data)} bytes, shorter than one {RECORD_SIZE}-byte record.",
                size=len(data),
            )
    try:
        return parse_faction_history(data)
    except Exception as exc:
        raise HistoryDecodeError(f"Could not decode history file: {exc}", size=len(data)) from exc


def _result(total: int, processed: int, summary: ReconcileSummary) -> dict:
    return {"total": total, "processed": processed, **asdict(summary)}


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

def submit_upload(
    db: Session,
    tracker: TaskTracker,
    user_id: Optional[str],
    clan_id: int,
    data: bytes,
) -> UploadTask:
    """
    Validate the caller and the file size, then register a PENDING task.
    File contents (including an empty file) are only judged by the job.
    """
    _require_clan(db, clan_id)
    is_member = (
        user_id is not None
        and db.query(Character.id)
        .filter(Character.user_id == user_id, Character.clan_id == clan_id)
        .first()
        is not None
    )
    if not is_member:
        raise NotClanMemberError(user_id, clan_id)
    if len(data) > settings.HISTORY_MAX_UPLOAD_BYTES:
        raise UploadTooLargeError(settings.HISTORY_MAX_UPLOAD_BYTES, len(data))

    task = tracker.create(clan_id)
    log.info("Upload task %s registered for clan %s (%d bytes)", task.id, clan_id, len(data))
    return task


def ingest_history(
    db: Session,
    clan_id: int,
    data: bytes,
    tracker: Optional[TaskTracker] = None,
    task_id: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> dict:
    """
    Decode, reconcile and persist one upload. Returns the result payload.

    Raw rows commit chunk by chunk; the weekly deltas and the ledgered flags
    of the rows they came from commit together afterwards.
    """
    records = _decode(data)
    if tracker is not None:
        tracker.set_total(task_id, len(records))
    if not records:
        return _result(0, 0, ReconcileSummary())

    min_date = min(r.date for r in records)
    max_date = max(r.date for r in records)
    pending = unledgered_span(db, clan_id)
    if pending is not None:
        log.warning(
            "clan=%s has history rows missing from the ledger (%s..%s); folding them in",
            clan_id, pending[0], pending[1],
        )
        min_date, max_date = min(min_date, pending[0]), max(max_date, pending[1])

    week_from, week_to = weeks_spanning(min_date, max_date)
    stored = load_stored_lines(db, clan_id, week_from, week_to)
    members = _member_map(db, clan_id)

    plan = reconcile(records, stored, members)

    log.info(
        "clan=%s decoded %d records (%d new, %d already stored)",
        clan_id, len(records), len(plan.new_records), len(plan.known_records),
    )

    def _progress(processed: int) -> None:
        if tracker is not None:
            tracker.advance(task_id, processed)

    processed = persist_history_records(
        db, clan_id, records,
        batch_size=batch_size or settings.HISTORY_BATCH_SIZE,
        on_progress=_progress,
    )

    try:
        for week in plan.weeks.values():
            if not week.is_empty():
                write_week_contributions(db, clan_id, week)
        mark_ledgered(db, clan_id, plan.ledgered_ids)
        db.commit()
    except Exception as exc:
        db.rollback()
        raise HistoryPersistenceError(
            f"History stored but weekly ledger update failed: {exc}", processed=processed,
        ) from exc

    return _result(len(records), processed, plan.summary)


def process_history_upload(
    task_id: str,
    clan_id: int,
    data: bytes,
    tracker: TaskTracker,
    session_factory: SessionFactory,
) -> None:
    """Run an upload detached from the request that created it."""
    tracker.start(task_id)
    db = session_factory()
    try:
        result = ingest_history(db, clan_id, data, tracker=tracker, task_id=task_id)
        tracker.complete(task_id, result)
        log.info("Upload task %s completed: %s", task_id, result)
    except ClanHubException as exc:
        db.rollback()
        log.warning("Upload task %s failed: %s", task_id, exc.message)
        tracker.fail(task_id, exc.message, processed=getattr(exc, "processed", None))
    except Exception as exc:
        db.rollback()
        log.exception("Upload task %s crashed", task_id)
        tracker.fail(task_id, str(exc))
    finally:
        db.close()


def get_upload_task(tracker: TaskTracker, task_id: str) -> UploadTask:
    task = tracker.get(task_id)
    if task is None:
        raise UploadTaskNotFoundError(task_id)
    return task


# ---------------------------------------------------------------------------
# Weekly stats
# ---------------------------------------------------------------------------

def get_weekly_summary(db: Session, clan_id: int, week_iso: str) -> list[CharacterWeekSummary]:
    return project_weekly_summary(db, clan_id, week_iso)


def update_weekly_stats(
    db: Session,
    clan_id: int,
    week_iso: str,
    character_id: int,
    kh_records: Optional[Iterable[tuple[int, int]]] = None,
    rhythm_valor: Optional[int] = None,
    zu_circles: Optional[int] = None,
) -> list[CharacterWeekSummary]:
    """Apply a manual correction and return the recomputed clan summary."""
    parse_week_iso(week_iso)
    _require_clan(db, clan_id)
    character = db.get(Character, character_id)
    if character is None or character.clan_id != clan_id:
        raise CharacterNotInClanError(character_id, clan_id)

    context, clan_hall = get_or_create_weekly_context(db, clan_id, week_iso)
    try:
        apply_manual_override(
            db, context, clan_hall, character_id,
            kh_records=kh_records,
            rhythm_valor=rhythm_valor,
            zu_circles=zu_circles,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    log.info("Manual weekly edit clan=%s week=%s character=%s", clan_id, week_iso, character_id)
    return project_weekly_summary(db, clan_id, week_iso)


# ---------------------------------------------------------------------------
# Raw history listing
# ---------------------------------------------------------------------------

def list_history(
    db: Session,
    clan_id: int,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[FactionHistory]]:
    """Return (total, page) of stored records, newest first."""
    _require_clan(db, clan_id)
    q = db.query(FactionHistory).filter(FactionHistory.clan_id == clan_id)
    total = q.count()
    items = (
        q.order_by(FactionHistory.date.desc(), FactionHistory.record_id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return total, items
