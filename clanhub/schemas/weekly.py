"""
Weekly summary schemas.

GET /clans/{id}/summary?week=  → list[CharacterWeekSummaryOut]
PUT /clans/{id}/summary?week=  → UpdateWeeklyStatsRequest → list[CharacterWeekSummaryOut]
POST /clans/weekly-contexts    → WeeklyContextsEnsuredResponse
"""
from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field


class KhRecordIn(BaseModel):
    stage: Annotated[int, Field(ge=1, le=7, description="Clan-hall stage 1 to 7.")]
    day_index: Annotated[int, Field(
        ge=0, le=6, description="Days after the week's Monday (0 = Monday).",
    )]


class UpdateWeeklyStatsRequest(BaseModel):
    """Manual correction for one character.

    Omitted fields are left untouched. `kh_records`, when given, replaces
    the character's whole clan-hall list for the week (send [] to clear it).
    """
    character_id: int
    kh_records: Optional[list[KhRecordIn]] = Field(default=None)
    rhythm_valor: Optional[int] = Field(default=None, ge=0)
    zu_circles: Optional[int] = Field(default=None, ge=0)


class KhHistoryItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    stage: int
    date: str = Field(description="ISO timestamp of the visit (UTC).")


class CharacterWeekSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    character_id: int
    name: str
    char_class: Optional[str] = None
    kh_attended_dates: list[str] = Field(
        description="Days (YYYY-MM-DD) with a visit to the then-active stage.",
    )
    kh_history: list[KhHistoryItemOut]
    rhythm_valor: int
    zu_circles: int
    zu_valor: int
    kh_valor: int
    total_valor: int = Field(description="rhythm_valor + zu_valor + kh_valor")


class WeeklyContextsEnsuredResponse(BaseModel):
    week_iso: str
    created: int
    existing: int
