"""
Faction history schemas.

Upload:   POST /clans/{id}/history/upload            → UploadAcceptedResponse
Status:   GET  /clans/{id}/history/tasks/{task_id}   → UploadTaskResponse
Listing:  GET  /clans/{id}/history                   → HistoryListResponse
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadAcceptedResponse(BaseModel):
    task_id: str = Field(description="Poll GET /clans/{id}/history/tasks/{task_id} for progress.")


class IngestResultOut(BaseModel):
    total: int = Field(description="Records decoded from the file.")
    processed: int = Field(description="Records stored (new or refreshed).")
    kh_checks_added: int = Field(description="New clan-hall stage checkpoints.")
    zu_circles_added: int = Field(description="New forbidden-knowledge circles.")
    new_dancers: int = Field(description="Members who went from 0 to >0 circles.")
    finished_dancers: int = Field(description="Members who reached 14 circles.")


class UploadTaskResponse(BaseModel):
    id: str
    status: str = Field(description='"PENDING" | "PROCESSING" | "COMPLETED" | "ERROR"')
    progress: int = Field(description="Records stored so far.")
    total: int = Field(description="Records decoded from the file (0 until decoded).")
    result: Optional[IngestResultOut] = None
    error: Optional[str] = None


class HistoryRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    record_id: int
    event_type: int
    actor_id: int
    date: str
    params: list[int]
    action: str
    description: str


class HistoryListResponse(BaseModel):
    total: int
    items: list[HistoryRecordOut]
