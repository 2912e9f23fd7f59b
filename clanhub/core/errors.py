"""
Custom exception hierarchy for the clan hub.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing English messages.

HistoryDecodeError / HistoryPersistenceError are raised inside detached
upload jobs; they end up on the task status, never in an HTTP response.
"""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class ClanHubException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ClanNotFoundError(ClanHubException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "CLAN_NOT_FOUND"

    def __init__(self, clan_id: int):
        super().__init__(
            message=f"Clan {clan_id} not found.",
            details={"clan_id": clan_id},
        )


class NotClanMemberError(ClanHubException):
    http_status = status.HTTP_403_FORBIDDEN
    code = "NOT_CLAN_MEMBER"

    def __init__(self, user_id: str | None, clan_id: int):
        super().__init__(
            message=f"User {user_id!r} has no character in clan {clan_id}.",
            details={"user_id": user_id, "clan_id": clan_id},
        )


class CharacterNotInClanError(ClanHubException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "CHARACTER_NOT_IN_CLAN"

    def __init__(self, character_id: int, clan_id: int):
        super().__init__(
            message=f"Character {character_id} is not a member of clan {clan_id}.",
            details={"character_id": character_id, "clan_id": clan_id},
        )


class UploadTaskNotFoundError(ClanHubException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "UPLOAD_TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        super().__init__(
            message=f"Upload task {task_id} not found.",
            details={"task_id": task_id},
        )


class InvalidWeekError(ClanHubException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "INVALID_WEEK"

    def __init__(self, week: str):
        super().__init__(
            message=f"Week {week!r} is not a valid ISO week (expected YYYY-Www).",
            details={"week": week},
        )


class UploadTooLargeError(ClanHubException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "UPLOAD_TOO_LARGE"

    def __init__(self, max_bytes: int, received: int):
        super().__init__(
            message=f"Upload exceeds maximum size of {max_bytes} bytes. Received {received}.",
            details={"max_bytes": max_bytes, "received": received},
        )


class HistoryDecodeError(ClanHubException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "HISTORY_DECODE_ERROR"

    def __init__(self, message: str, size: int | None = None):
        super().__init__(
            message=message,
            details={"size": size} if size is not None else {},
        )


class HistoryPersistenceError(ClanHubException):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "HISTORY_PERSISTENCE_ERROR"

    def __init__(self, message: str, processed: int):
        self.processed = processed
        super().__init__(
            message=message,
            details={"processed": processed},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def clanhub_exception_handler(request: Request, exc: ClanHubException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
