"""
Clan history router.

POST /clans/{clan_id}/history/upload             upload a faction history file (detached)
GET  /clans/{clan_id}/history/tasks/{task_id}    poll an upload
GET  /clans/{clan_id}/history                    stored raw history (paginated, newest first)
GET  /clans/{clan_id}/summary?week=YYYY-Www      weekly summary per member
PUT  /clans/{clan_id}/summary?week=YYYY-Www      manual weekly correction
POST /clans/weekly-contexts                      ensure this week's context for every clan
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Header, Query, UploadFile, status
from sqlalchemy.orm import Session

from clanhub.db.base import SessionFactory, get_db, get_session_factory
from clanhub.models.faction_history import FactionHistory
from clanhub.schemas.common import ErrorResponse
from clanhub.schemas.history import (
    HistoryListResponse,
    HistoryRecordOut,
    UploadAcceptedResponse,
    UploadTaskResponse,
)
from clanhub.schemas.weekly import (
    CharacterWeekSummaryOut,
    UpdateWeeklyStatsRequest,
    WeeklyContextsEnsuredResponse,
)
from clanhub.services.history import (
    get_upload_task,
    get_weekly_summary,
    list_history,
    process_history_upload,
    submit_upload,
    update_weekly_stats,
)
from clanhub.services.ledger import ensure_weekly_contexts
from clanhub.services.task_tracker import TaskTracker, get_task_tracker
from clanhub.services.weeks import ensure_utc

router = APIRouter(prefix="/clans", tags=["clans"])

_WEEK_QUERY = Query(
    ...,
    pattern=r"^\d{4}-W\d{2}$",
    description="ISO week, e.g. 2025-W01.",
    examples=["2025-W01"],
)


# ---------------------------------------------------------------------------
# Serialization helper
# ---------------------------------------------------------------------------

def _record_to_response(row: FactionHistory) -> HistoryRecordOut:
    return HistoryRecordOut(
        record_id=row.record_id,
        event_type=row.event_type,
        actor_id=row.actor_id,
        date=ensure_utc(row.date).isoformat(),
        params=[row.param0, row.param1, row.param2],
        action=row.action,
        description=row.description,
    )


# ---------------------------------------------------------------------------
# POST /clans/weekly-contexts
# ---------------------------------------------------------------------------

@router.post(
    "/weekly-contexts",
    response_model=WeeklyContextsEnsuredResponse,
    summary="Ensure the current week's context exists for every clan",
)
def ensure_contexts(db: Session = Depends(get_db)):
    """
    Idempotent: clans that already have this week's context are counted
    as `existing`. Meant to be hit by a scheduler at least once a week.
    """
    result = ensure_weekly_contexts(db)
    return WeeklyContextsEnsuredResponse(
        week_iso=result.week_iso, created=result.created, existing=result.existing,
    )


# ---------------------------------------------------------------------------
# History upload
# ---------------------------------------------------------------------------

@router.post(
    "/{clan_id}/history/upload",
    response_model=UploadAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a faction history file",
    responses={
        403: {"model": ErrorResponse, "description": "Caller has no character in the clan."},
        404: {"model": ErrorResponse, "description": "Clan not found."},
        422: {"model": ErrorResponse, "description": "Oversized file."},
    },
)
def upload_history(
    clan_id: int,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="Binary faction history dump."),
    x_user_id: Optional[str] = Header(default=None, description="Acting user id."),
    db: Session = Depends(get_db),
    tracker: TaskTracker = Depends(get_task_tracker),
    session_factory: SessionFactory = Depends(get_session_factory),
):
    """
    Returns a task id immediately. Decoding, storage and weekly ledger
    updates run after the response; poll the task for progress and the
    result counters.
    """
    data = file.file.read()
    task = submit_upload(db, tracker, x_user_id, clan_id, data)
    background_tasks.add_task(
        process_history_upload, task.id, clan_id, data, tracker, session_factory,
    )
    return UploadAcceptedResponse(task_id=task.id)


@router.get(
    "/{clan_id}/history/tasks/{task_id}",
    response_model=UploadTaskResponse,
    summary="Get upload task status",
    responses={404: {"model": ErrorResponse, "description": "Unknown task id."}},
)
def get_upload_status(
    clan_id: int,
    task_id: str,
    tracker: TaskTracker = Depends(get_task_tracker),
):
    task = get_upload_task(tracker, task_id)
    return UploadTaskResponse(
        id=task.id,
        status=task.status.value,
        progress=task.progress,
        total=task.total,
        result=task.result,
        error=task.error,
    )


@router.get(
    "/{clan_id}/history",
    response_model=HistoryListResponse,
    summary="List stored faction history (newest first)",
)
def get_history(
    clan_id: int,
    limit: int = Query(default=50, ge=1, le=500, description="Page size."),
    offset: int = Query(default=0, ge=0, description="Skip N items."),
    db: Session = Depends(get_db),
):
    total, items = list_history(db, clan_id, limit=limit, offset=offset)
    return HistoryListResponse(
        total=total,
        items=[_record_to_response(row) for row in items],
    )


# ---------------------------------------------------------------------------
# Weekly summary
# ---------------------------------------------------------------------------

@router.get(
    "/{clan_id}/summary",
    response_model=list[CharacterWeekSummaryOut],
    summary="Weekly summary per clan member",
    responses={404: {"model": ErrorResponse, "description": "Clan not found."}},
)
def get_summary(
    clan_id: int,
    week: str = _WEEK_QUERY,
    db: Session = Depends(get_db),
):
    """
    Sorted by `total_valor` descending, then by name. Members with no
    activity appear with zero totals; former members are not listed.
    """
    return get_weekly_summary(db, clan_id, week)


@router.put(
    "/{clan_id}/summary",
    response_model=list[CharacterWeekSummaryOut],
    summary="Manually correct one member's weekly stats",
    responses={404: {"model": ErrorResponse, "description": "Clan or member not found."}},
)
def put_summary(
    clan_id: int,
    payload: UpdateWeeklyStatsRequest,
    week: str = _WEEK_QUERY,
    db: Session = Depends(get_db),
):
    """
    Values replace what is stored: `rhythm_valor` and `zu_circles` overwrite,
    `kh_records` replaces the member's whole clan-hall list for the week.
    Omitted fields are left unchanged.
    """
    kh_records = (
        [(r.stage, r.day_index) for r in payload.kh_records]
        if payload.kh_records is not None else None
    )
    return update_weekly_stats(
        db, clan_id, week, payload.character_id,
        kh_records=kh_records,
        rhythm_valor=payload.rhythm_valor,
        zu_circles=payload.zu_circles,
    )
