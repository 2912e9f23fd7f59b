"""
Tests for the weekly summary projection.

Pure rules (stage close times, active stage, attendance calendar) use
plain namespaces; projection tests go through the db fixture.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from clanhub.core.errors import ClanNotFoundError
from clanhub.models.weekly import ClanHallProgress, ForbiddenKnowledge, Rhythm
from clanhub.services.ledger import get_or_create_weekly_context
from clanhub.services.summary import (
    STAGE_CLOSE_VISITS,
    active_stage_at,
    attended_dates,
    project_weekly_summary,
    stage_close_times,
)

WEEK = "2025-W02"
MONDAY = datetime(2025, 1, 6, tzinfo=timezone.utc)
SUNDAY_END = MONDAY + timedelta(days=7) - timedelta(milliseconds=1)


def at(day_index: int, hour: int = 12, second: int = 0) -> datetime:
    return MONDAY + timedelta(days=day_index, hours=hour, seconds=second)


def v(stage: int, moment: datetime, valor: int = 0):
    return SimpleNamespace(stage=stage, created_at=moment, valor=valor)


def _stage_one_crowd(day_index: int) -> list:
    """STAGE_CLOSE_VISITS stage-1 visits by other characters on one day."""
    return [v(1, at(day_index, 10, i)) for i in range(STAGE_CLOSE_VISITS)]


class TestStageCloseTimes:
    def test_no_progress_no_closes(self):
        assert stage_close_times([]) == {}

    def test_closes_at_120th_visit(self):
        closes = stage_close_times(_stage_one_crowd(2))
        assert closes == {1: at(2, 10, STAGE_CLOSE_VISITS - 1)}

    def test_119_visits_do_not_close(self):
        assert stage_close_times(_stage_one_crowd(2)[:-1]) == {}

    def test_higher_stage_closes_lower_ones(self):
        closes = stage_close_times([v(1, at(0)), v(3, at(1))])
        assert closes == {1: at(1), 2: at(1)}

    def test_minimum_of_both_conditions(self):
        progress = _stage_one_crowd(3) + [v(2, at(1))]
        closes = stage_close_times(progress)
        assert closes[1] == at(1)

    def test_stage_seven_never_closes(self):
        closes = stage_close_times([v(7, at(0))])
        assert 7 not in closes
        assert set(closes) == {1, 2, 3, 4, 5, 6}

    def test_naive_timestamps_are_utc(self):
        naive = at(1).replace(tzinfo=None)
        assert stage_close_times([v(2, naive)]) == {1: at(1)}


class TestActiveStage:
    def test_counts_stages_closed_strictly_before(self):
        closes = {1: at(1), 2: at(3)}
        assert active_stage_at(closes, at(0)) == 1
        assert active_stage_at(closes, at(1)) == 1
        assert active_stage_at(closes, at(2)) == 2
        assert active_stage_at(closes, at(4)) == 3


class TestAttendedDates:
    def test_visit_before_close_counts_after_close_does_not(self):
        progress = _stage_one_crowd(2)
        early = [v(1, at(1))]
        late = [v(1, at(3))]
        closes = stage_close_times(progress + early + late)

        assert attended_dates(early, closes, MONDAY, SUNDAY_END) == ["2025-01-07"]
        assert attended_dates(late, closes, MONDAY, SUNDAY_END) == []

    def test_visit_to_new_active_stage_counts(self):
        progress = _stage_one_crowd(2)
        member = [v(2, at(3))]
        closes = stage_close_times(progress + member)
        assert attended_dates(member, closes, MONDAY, SUNDAY_END) == ["2025-01-09"]

    def test_first_visit_of_the_day_is_representative(self):
        # stage 1 closes at 12:00 on Wednesday; the member visits at 08:00 and 13:00
        closes = {1: at(2, 12)}
        member = [v(1, at(2, 8)), v(1, at(2, 13))]
        assert attended_dates(member, closes, MONDAY, SUNDAY_END) == ["2025-01-08"]

    def test_any_stage_matching_is_enough(self):
        closes = {1: at(2, 12)}
        member = [v(1, at(2, 13)), v(2, at(2, 14))]
        assert attended_dates(member, closes, MONDAY, SUNDAY_END) == ["2025-01-08"]

    def test_visits_outside_week_ignored(self):
        member = [v(1, at(8))]
        assert attended_dates(member, {}, MONDAY, SUNDAY_END) == []


# ---------------------------------------------------------------------------
# Projection (uses db fixture)
# ---------------------------------------------------------------------------

class TestProjectWeeklySummary:
    def test_unknown_clan(self, db):
        with pytest.raises(ClanNotFoundError):
            project_weekly_summary(db, 9_999_999, WEEK)

    def test_no_context_gives_zeroes(self, db, make_clan):
        clan, _ = make_clan([("Bravo", None), ("Alpha", None)])
        summary = project_weekly_summary(db, clan.id, WEEK)
        assert [s.name for s in summary] == ["Alpha", "Bravo"]
        assert all(s.total_valor == 0 for s in summary)
        assert all(s.kh_attended_dates == [] for s in summary)

    def test_totals_and_ordering(self, db, make_clan):
        clan, (a, b, c) = make_clan([("Anna", None), ("boris", None), ("Carl", None)])
        context, hall = get_or_create_weekly_context(db, clan.id, WEEK)
        db.add_all([
            Rhythm(context_id=context.id, character_id=a.id, valor=10),
            ForbiddenKnowledge(context_id=context.id, character_id=a.id, valor=7),
            ClanHallProgress(
                clan_hall_id=hall.id, character_id=a.id, stage=1, valor=4, gold=20,
                created_at=at(1),
            ),
            Rhythm(context_id=context.id, character_id=b.id, valor=14),
            ForbiddenKnowledge(context_id=context.id, character_id=c.id, valor=14),
        ])
        db.commit()

        summary = project_weekly_summary(db, clan.id, WEEK)
        by_name = {s.name: s for s in summary}

        assert by_name["Anna"].total_valor == 21
        assert by_name["Anna"].kh_valor == 4
        assert by_name["Anna"].zu_circles == 1
        assert by_name["Anna"].kh_attended_dates == ["2025-01-07"]
        assert by_name["Anna"].kh_history[0].stage == 1
        assert by_name["Carl"].zu_circles == 2
        # Anna 21, then boris/Carl tie at 14 and sort by name ignoring case
        assert [s.name for s in summary] == ["Anna", "boris", "Carl"]
        for s in summary:
            assert s.total_valor == s.rhythm_valor + s.zu_valor + s.kh_valor

    def test_accented_names_sort_with_their_base_letter(self, db, make_clan):
        clan, _ = make_clan([("Fritz", None), ("Émile", None), ("dora", None)])
        summary = project_weekly_summary(db, clan.id, WEEK)
        assert [s.name for s in summary] == ["dora", "Émile", "Fritz"]

    def test_former_members_are_dropped(self, db, make_clan):
        clan, (stays, leaves) = make_clan([("Stays", None), ("Leaves", None)])
        context, _ = get_or_create_weekly_context(db, clan.id, WEEK)
        db.add(Rhythm(context_id=context.id, character_id=leaves.id, valor=8))
        leaves.clan_id = None
        db.commit()

        summary = project_weekly_summary(db, clan.id, WEEK)
        assert [s.character_id for s in summary] == [stays.id]
