"""
Ingestion reconciler: decides what a decoded upload changes.

Steps
-----
1. split_new          records whose id is already stored are "known"; they
                       are still written (refreshing labels) but never counted
                       twice.
2. merge_contributions  valor (type 1) and gold (type 2) lines of the same
                       actor at the same second are one real-world action.
                       Lines are merged across the batch and the stored rows
                       of the same weeks, so a pair split between two
                       overlapping exports is still recognised.
3. classify           each merged (valor, gold) pair lands in exactly one of
                       rhythm, forbidden knowledge (ZU), clan-hall stage, or none.
4. reconcile          takes every (actor, second) group holding a line that is
                       not ledgered yet, retracts what the already-ledgered
                       lines of that group had contributed, applies the merged
                       result, buckets the deltas per ISO week and computes the
                       batch summary (ZU circles, stage checks, new and
                       finished dancers).

Pure: the caller loads stored lines and members.
"""
from __future__ import annotations

import enum
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from clanhub.services.faction_history_parser import FactionEventType, RawLogRecord
from clanhub.services.weeks import get_week_iso

# stage -> (valor, gold); exact match only
STAGE_TABLE: dict[int, tuple[int, int]] = {
    1: (4, 20),
    2: (6, 30),
    3: (10, 45),
    4: (14, 65),
    5: (24, 90),
    6: (40, 120),
    7: (70, 155),
}
_STAGE_BY_PAIR = {pair: stage for stage, pair in STAGE_TABLE.items()}

ZU_VALOR = 7
RHYTHM_VALORS = frozenset({2, 4, 8})
FINISHED_DANCER_CIRCLES = 14


class ContributionKind(str, enum.Enum):
    rhythm = "rhythm"
    forbidden_knowledge = "forbidden_knowledge"
    clan_hall = "clan_hall"
    unclassified = "unclassified"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Contribution:
    """A merged valor/gold contribution by one actor at one second."""
    actor_id: int
    timestamp: int
    valor: int
    gold: int

    @property
    def date(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)


@dataclass
class StageVisit:
    stage: int
    valor: int
    gold: int
    timestamp: int


@dataclass
class WeekContributions:
    """Ledger deltas for one ISO week, keyed by Character primary key."""
    week_iso: str
    rhythm: dict[int, int] = field(default_factory=dict)
    forbidden_knowledge: dict[int, int] = field(default_factory=dict)
    stages: dict[tuple[int, int], StageVisit] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.rhythm or self.forbidden_knowledge or self.stages)


@dataclass
class ReconcileSummary:
    zu_circles_added: int = 0
    kh_checks_added: int = 0
    new_dancers: int = 0
    finished_dancers: int = 0


@dataclass(frozen=True)
class StoredLine:
    """One faction history line as the ledger sees it."""
    record_id: int
    actor_id: int
    timestamp: int
    event_type: int
    amount: int
    ledgered: bool = False


@dataclass
class ReconcileResult:
    new_records: list[RawLogRecord]
    known_records: list[RawLogRecord]
    weeks: dict[str, WeekContributions]
    summary: ReconcileSummary
    # record ids to flag as ledgered once the week deltas are written
    ledgered_ids: list[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def stage_for(valor: int, gold: int) -> Optional[int]:
    return _STAGE_BY_PAIR.get((valor, gold))


def stage_values(stage: int) -> tuple[int, int]:
    return STAGE_TABLE.get(stage, (0, 0))


def classify(valor: int, gold: int) -> ContributionKind:
    if valor == ZU_VALOR and gold == 0:
        return ContributionKind.forbidden_knowledge
    if gold == 0 and valor in RHYTHM_VALORS:
        return ContributionKind.rhythm
    if valor > 0 and gold > 0 and stage_for(valor, gold) is not None:
        return ContributionKind.clan_hall
    return ContributionKind.unclassified


def merge_contributions(
    entries: Iterable[tuple[int, int, int, int]],
) -> list[Contribution]:
    """
    Fold (actor_id, timestamp, event_type, amount) tuples into one
    Contribution per (actor_id, timestamp). Only valor and gold lines count;
    output keeps the order in which each (actor, second) was first seen.
    """
    merged: dict[tuple[int, int], list[int]] = {}
    for actor_id, timestamp, event_type, amount in entries:
        if event_type == FactionEventType.VALOR_CONTRIBUTE:
            slot = 0
        elif event_type == FactionEventType.GOLD_CONTRIBUTE:
            slot = 1
        else:
            continue
        pair = merged.setdefault((actor_id, timestamp), [0, 0])
        pair[slot] += amount or 0

    return [
        Contribution(actor_id=actor_id, timestamp=ts, valor=valor, gold=gold)
        for (actor_id, ts), (valor, gold) in merged.items()
    ]


def line_entries(lines: Iterable[StoredLine]) -> list[tuple[int, int, int, int]]:
    return [(l.actor_id, l.timestamp, l.event_type, l.amount) for l in lines]


def _merge_one(lines: Iterable[StoredLine]) -> Optional[Contribution]:
    merged = merge_contributions(line_entries(lines))
    return merged[0] if merged else None


def split_new(
    records: Iterable[RawLogRecord],
    stored_ids: set[int],
) -> tuple[list[RawLogRecord], list[RawLogRecord]]:
    """Return (new, known). A repeated id inside the batch counts once."""
    new: list[RawLogRecord] = []
    known: list[RawLogRecord] = []
    seen: set[int] = set()
    for r in records:
        if r.id in stored_ids or r.id in seen:
            known.append(r)
        else:
            new.append(r)
        seen.add(r.id)
    return new, known


def count_circles(
    contributions: Iterable[Contribution],
    character_ids: dict[int, int],
) -> Counter:
    """ZU circles per Character id; actors who are not members are ignored."""
    counts: Counter = Counter()
    for c in contributions:
        if classify(c.valor, c.gold) is not ContributionKind.forbidden_knowledge:
            continue
        character_id = character_ids.get(c.actor_id)
        if character_id is not None:
            counts[character_id] += 1
    return counts


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def _add(
    weeks: dict[str, WeekContributions],
    c: Contribution,
    character_id: int,
    sign: int,
) -> None:
    kind = classify(c.valor, c.gold)
    if kind is ContributionKind.unclassified:
        return
    if kind is ContributionKind.clan_hall and sign < 0:
        # stage rows keep the earliest sighting; they are never retracted
        return

    week_iso = get_week_iso(c.date)
    week = weeks.setdefault(week_iso, WeekContributions(week_iso=week_iso))

    if kind is ContributionKind.forbidden_knowledge:
        week.forbidden_knowledge[character_id] = (
            week.forbidden_knowledge.get(character_id, 0) + sign * ZU_VALOR
        )
    elif kind is ContributionKind.rhythm:
        week.rhythm[character_id] = week.rhythm.get(character_id, 0) + sign * c.valor
    else:
        stage = stage_for(c.valor, c.gold)
        key = (character_id, stage)
        prev = week.stages.get(key)
        # earliest visit to a stage wins; on ties the first one seen stays
        if prev is None or c.timestamp < prev.timestamp:
            week.stages[key] = StageVisit(
                stage=stage, valor=c.valor, gold=c.gold, timestamp=c.timestamp,
            )


def _is_zu(c: Optional[Contribution]) -> bool:
    return c is not None and classify(c.valor, c.gold) is ContributionKind.forbidden_knowledge


def reconcile(
    records: list[RawLogRecord],
    stored: Iterable[StoredLine],
    character_ids: dict[int, int],
) -> ReconcileResult:
    """
    `records` is the decoded batch. `stored` holds the stored lines of every
    ISO week the batch touches. `character_ids` maps game role id to
    Character id for current members.

    Only (actor, second) groups holding at least one line that is not yet
    ledgered change anything. For such a group the contribution merged from
    its already-ledgered lines is retracted and the contribution merged from
    all of its lines is applied, so a valor/gold pair completed by a later
    export turns into the right ledger entry.
    """
    lines: dict[int, StoredLine] = {s.record_id: s for s in stored}
    new, known = split_new(records, set(lines))
    for r in new:
        lines[r.id] = StoredLine(
            record_id=r.id, actor_id=r.actor_id, timestamp=r.timestamp,
            event_type=r.event_type, amount=r.amount,
        )

    groups: dict[tuple[int, int], list[StoredLine]] = {}
    for line in lines.values():
        groups.setdefault((line.actor_id, line.timestamp), []).append(line)

    before = count_circles(
        merge_contributions(line_entries(l for l in lines.values() if l.ledgered)),
        character_ids,
    )

    summary = ReconcileSummary()
    weeks: dict[str, WeekContributions] = {}
    added: Counter = Counter()
    for (actor_id, _ts), group in groups.items():
        if all(l.ledgered for l in group):
            continue
        previous = _merge_one(l for l in group if l.ledgered)
        current = _merge_one(group)
        if current is None:
            continue

        kind = classify(current.valor, current.gold)
        previous_kind = classify(previous.valor, previous.gold) if previous else None
        if kind is not previous_kind:
            if kind is ContributionKind.forbidden_knowledge:
                summary.zu_circles_added += 1
            elif kind is ContributionKind.clan_hall:
                summary.kh_checks_added += 1

        character_id = character_ids.get(actor_id)
        if character_id is None:
            continue
        if previous is not None:
            _add(weeks, previous, character_id, -1)
        _add(weeks, current, character_id, +1)
        added[character_id] += _is_zu(current) - _is_zu(previous)

    for character_id, delta in added.items():
        if not delta:
            continue
        old = before.get(character_id, 0)
        new_total = old + delta
        if old == 0 and new_total > 0:
            summary.new_dancers += 1
        if old < FINISHED_DANCER_CIRCLES <= new_total:
            summary.finished_dancers += 1

    return ReconcileResult(
        new_records=new,
        known_records=known,
        weeks=weeks,
        summary=summary,
        ledgered_ids=[rid for rid, l in lines.items() if not l.ledgered],
    )
