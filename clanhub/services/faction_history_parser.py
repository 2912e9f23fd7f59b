"""
Faction history decoder.

The game server dumps a clan's faction log as fixed 28-byte little-endian
records, optionally preceded by an 8-byte (from_id, to_id) range marker:

    int32 type | int32 id | int32 timestamp | int32 who | int32 params[3]

Public API
----------
parse_faction_history(buffer)  -> list[RawLogRecord]
detect_header(buffer)          -> (offset, max_records | None)
sanitize_params(type, params)  -> params with unused slots zeroed
describe(type, who, params)    -> (action, description)

Pure functions: no I/O, no database.
"""
from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

RECORD = struct.Struct("<7i")
HEADER = struct.Struct("<2i")
RECORD_SIZE = RECORD.size   # 28
HEADER_SIZE = HEADER.size   # 8

EMPTY_HEADER = (-1, -2)


class FactionEventType(enum.IntEnum):
    ITEM_GET = 0
    VALOR_CONTRIBUTE = 1
    GOLD_CONTRIBUTE = 2
    INVITE = 5
    JOIN = 6
    REFUSE_JOIN = 7
    LEAVE = 8
    ROLE_CHANGE = 9
    EXPEL = 10


# How many leading params each event type actually uses. The rest of the
# slots hold stale memory from the server and must be zeroed.
PARAM_SLOTS: dict[int, int] = {
    FactionEventType.ITEM_GET: 1,
    FactionEventType.VALOR_CONTRIBUTE: 1,
    FactionEventType.GOLD_CONTRIBUTE: 1,
    FactionEventType.INVITE: 1,
    FactionEventType.EXPEL: 1,
    FactionEventType.JOIN: 0,
    FactionEventType.REFUSE_JOIN: 0,
    FactionEventType.LEAVE: 0,
    FactionEventType.ROLE_CHANGE: 3,
}

FACTION_ROLES = {
    2: "Master",
    3: "Marshal",
    4: "Major",
    5: "Captain",
    6: "Private",
}


@dataclass(frozen=True)
class RawLogRecord:
    id: int
    timestamp: int          # int32 unix seconds, as stored by the server
    actor_id: int           # role id of the character who acted
    event_type: int
    params: tuple[int, int, int]
    action: str = ""
    description: str = ""

    @property
    def date(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def amount(self) -> int:
        return self.params[0]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def detect_header(buffer: bytes) -> tuple[int, Optional[int]]:
    """
    Decide whether the first 8 bytes are a (from_id, to_id) range marker.

    Returns (offset, max_records); max_records is None when uncapped.
    A range whose implied size is more than one record beyond the buffer is
    treated as record data that happened to satisfy from_id <= to_id.
    """
    if len(buffer) < HEADER_SIZE:
        return 0, None

    from_id, to_id = HEADER.unpack_from(buffer, 0)
    if from_id <= to_id:
        potential_max = to_id - from_id + 1
        expected_min_size = HEADER_SIZE + potential_max * RECORD_SIZE
        if expected_min_size <= len(buffer) + RECORD_SIZE:
            return HEADER_SIZE, potential_max
        return 0, None
    if (from_id, to_id) == EMPTY_HEADER:
        return HEADER_SIZE, 0
    return 0, None


def sanitize_params(event_type: int, params: tuple[int, int, int]) -> tuple[int, int, int]:
    used = PARAM_SLOTS.get(event_type)
    if used is None:
        return params
    return tuple(p if i < used else 0 for i, p in enumerate(params))


def _role_name(role: int) -> str:
    return FACTION_ROLES.get(role, f"unknown role {role}")


def describe(event_type: int, who: int, params: tuple[int, int, int]) -> tuple[str, str]:
    """Human-readable (action, description) for a record."""
    p0, p1, p2 = params
    if event_type == FactionEventType.ITEM_GET:
        return "Receives item", f"Player {{role_id:{who}}} receives item {{item_id:{p0}}}."
    if event_type == FactionEventType.VALOR_CONTRIBUTE:
        return "Contributes valor", f"Player {{role_id:{who}}} contributes {p0} valor."
    if event_type == FactionEventType.GOLD_CONTRIBUTE:
        return "Contributes gold", f"Player {{role_id:{who}}} contributes {p0} faction gold."
    if event_type == FactionEventType.INVITE:
        return "Invites player", f"Player {{role_id:{who}}} invites player {{role_id:{p0}}} to the faction."
    if event_type == FactionEventType.JOIN:
        return "Joins faction", f"Player {{role_id:{who}}} joins the faction."
    if event_type == FactionEventType.REFUSE_JOIN:
        return "Refuses to join", f"Player {{role_id:{who}}} refuses to join the faction."
    if event_type == FactionEventType.LEAVE:
        return "Leaves faction", f"Player {{role_id:{who}}} leaves the faction."
    if event_type == FactionEventType.ROLE_CHANGE:
        operation = "promotes" if p2 == 1 else "demotes"
        return (
            "Changes rank",
            f"Player {{role_id:{who}}} {operation} player {{role_id:{p0}}} to {_role_name(p1)}.",
        )
    if event_type == FactionEventType.EXPEL:
        return "Expels player", f"Player {{role_id:{who}}} expels player {{role_id:{p0}}} from the faction."
    return f"Unknown action {event_type}", ""


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def parse_faction_history(buffer: bytes) -> list[RawLogRecord]:
    """
    Decode every complete record in `buffer`.
    Trailing bytes shorter than a record are ignored; unknown event types
    are kept with a generic label.
    """
    offset, max_records = detect_header(buffer)
    records: list[RawLogRecord] = []

    while offset + RECORD_SIZE <= len(buffer):
        if max_records is not None and len(records) >= max_records:
            break

        event_type, record_id, timestamp, who, p0, p1, p2 = RECORD.unpack_from(buffer, offset)
        params = sanitize_params(event_type, (p0, p1, p2))
        action, description = describe(event_type, who, params)
        records.append(RawLogRecord(
            id=record_id,
            timestamp=timestamp,
            actor_id=who,
            event_type=event_type,
            params=params,
            action=action,
            description=description,
        ))
        offset += RECORD_SIZE

    return records
