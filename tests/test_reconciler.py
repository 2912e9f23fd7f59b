"""
Unit tests for the ingestion reconciler (pure functions, no database).
"""
from collections import Counter

import pytest

from clanhub.services.faction_history_parser import RawLogRecord, describe
from clanhub.services.reconciler import (
    STAGE_TABLE,
    Contribution,
    ContributionKind,
    ReconcileSummary,
    StoredLine,
    classify,
    count_circles,
    merge_contributions,
    reconcile,
    split_new,
    stage_for,
    stage_values,
)

T0 = 1736121600  # 2025-01-06 00:00:00 UTC, Monday of 2025-W02
DAY = 86400

MEMBERS = {1: 501, 2: 502}


def rec(record_id, event_type, ts, who, amount) -> RawLogRecord:
    params = (amount, 0, 0)
    action, description = describe(event_type, who, params)
    return RawLogRecord(
        id=record_id, timestamp=ts, actor_id=who, event_type=event_type,
        params=params, action=action, description=description,
    )


def visit(record_id, ts, who, valor, gold) -> list[RawLogRecord]:
    """A clan-hall contribution as the server logs it: two lines, same second."""
    return [rec(record_id, 1, ts, who, valor), rec(record_id + 1, 2, ts, who, gold)]


def stored(r: RawLogRecord, ledgered: bool = True) -> StoredLine:
    return StoredLine(
        record_id=r.id, actor_id=r.actor_id, timestamp=r.timestamp,
        event_type=r.event_type, amount=r.amount, ledgered=ledgered,
    )


class TestClassify:
    def test_forbidden_knowledge(self):
        assert classify(7, 0) is ContributionKind.forbidden_knowledge

    @pytest.mark.parametrize("valor", [2, 4, 8])
    def test_rhythm(self, valor):
        assert classify(valor, 0) is ContributionKind.rhythm

    @pytest.mark.parametrize("valor", [1, 3, 6, 14])
    def test_other_valor_only_is_unclassified(self, valor):
        assert classify(valor, 0) is ContributionKind.unclassified

    def test_stage_pairs_are_clan_hall(self):
        for valor, gold in STAGE_TABLE.values():
            assert classify(valor, gold) is ContributionKind.clan_hall

    def test_stage_exact_match_only(self):
        assert stage_for(4, 20) == 1
        assert stage_for(5, 20) is None
        assert classify(5, 20) is ContributionKind.unclassified

    def test_gold_only_is_unclassified(self):
        assert classify(0, 20) is ContributionKind.unclassified

    def test_stage_table_roundtrip(self):
        assert [stage_for(*stage_values(s)) for s in range(1, 8)] == list(range(1, 8))
        assert stage_values(9) == (0, 0)


class TestMergeContributions:
    def test_same_second_valor_and_gold_merge(self):
        merged = merge_contributions([(1, T0, 1, 4), (1, T0, 2, 20)])
        assert merged == [Contribution(actor_id=1, timestamp=T0, valor=4, gold=20)]

    def test_different_seconds_stay_apart(self):
        merged = merge_contributions([(1, T0, 1, 4), (1, T0 + 1, 2, 20)])
        assert [(c.valor, c.gold) for c in merged] == [(4, 0), (0, 20)]

    def test_different_actors_stay_apart(self):
        merged = merge_contributions([(1, T0, 1, 4), (2, T0, 2, 20)])
        assert len(merged) == 2

    def test_non_contribution_types_ignored(self):
        assert merge_contributions([(1, T0, 0, 7), (1, T0, 6, 0), (1, T0, 9, 3)]) == []


class TestSplitNew:
    def test_stored_ids_are_known(self):
        records = [rec(1, 1, T0, 1, 7), rec(2, 1, T0, 1, 7)]
        new, known = split_new(records, {1})
        assert [r.id for r in new] == [2]
        assert [r.id for r in known] == [1]

    def test_repeated_id_in_batch_counts_once(self):
        records = [rec(1, 1, T0, 1, 7), rec(1, 1, T0, 1, 7)]
        new, known = split_new(records, set())
        assert len(new) == 1
        assert len(known) == 1


class TestReconcile:
    def test_fixture_example(self):
        records = [
            rec(100, 1, T0, 1, 7),
            rec(101, 1, T0 + 1, 1, 4),
            rec(102, 2, T0 + 1, 1, 20),
        ]
        result = reconcile(records, [], MEMBERS)
        assert result.summary.zu_circles_added == 1
        assert result.summary.kh_checks_added == 1
        assert result.summary.new_dancers == 1
        assert result.summary.finished_dancers == 0

        week = result.weeks["2025-W02"]
        assert week.forbidden_knowledge == {501: 7}
        assert week.stages[(501, 1)].timestamp == T0 + 1
        assert week.rhythm == {}
        assert sorted(result.ledgered_ids) == [100, 101, 102]

    def test_known_records_do_not_count(self):
        first = rec(100, 1, T0, 1, 7)
        records = [first, rec(101, 1, T0 + 5, 1, 7)]
        result = reconcile(records, [stored(first)], MEMBERS)
        assert result.summary.zu_circles_added == 1
        assert result.weeks["2025-W02"].forbidden_knowledge == {501: 7}
        assert [r.id for r in result.known_records] == [100]
        assert result.ledgered_ids == [101]

    def test_fully_ledgered_batch_changes_nothing(self):
        records = visit(1, T0, 1, 4, 20) + [rec(3, 1, T0 + 9, 2, 7)]
        result = reconcile(records, [stored(r) for r in records], MEMBERS)
        assert result.weeks == {}
        assert result.summary == ReconcileSummary()
        assert result.ledgered_ids == []

    def test_rhythm_accumulates(self):
        records = [rec(1, 1, T0, 2, 2), rec(2, 1, T0 + 10, 2, 4), rec(3, 1, T0 + 20, 2, 8)]
        result = reconcile(records, [], MEMBERS)
        assert result.weeks["2025-W02"].rhythm == {502: 14}

    def test_earliest_stage_visit_wins(self):
        records = visit(1, T0 + 500, 1, 10, 45) + visit(3, T0 + 100, 1, 10, 45)
        result = reconcile(records, [], MEMBERS)
        stage_visit = result.weeks["2025-W02"].stages[(501, 3)]
        assert stage_visit.timestamp == T0 + 100
        # both visits are new checkpoints for the batch summary
        assert result.summary.kh_checks_added == 2

    def test_off_by_one_pair_is_not_a_stage(self):
        records = visit(1, T0, 1, 5, 20)
        result = reconcile(records, [], MEMBERS)
        assert result.summary.kh_checks_added == 0
        assert result.weeks == {}

    def test_non_members_counted_but_not_ledgered(self):
        records = [rec(1, 1, T0, 99, 7)]
        result = reconcile(records, [], MEMBERS)
        assert result.summary.zu_circles_added == 1
        assert result.summary.new_dancers == 0
        assert result.weeks == {}
        assert result.ledgered_ids == [1]

    def test_contributions_bucketed_by_iso_week(self):
        records = [rec(1, 1, T0 - 1, 1, 7), rec(2, 1, T0, 1, 7)]
        result = reconcile(records, [], MEMBERS)
        assert set(result.weeks) == {"2025-W01", "2025-W02"}

    def test_finished_dancer_crosses_fourteen(self):
        history = [stored(rec(1000 + i, 1, T0 - DAY + i, 1, 7)) for i in range(13)]
        history += [stored(rec(2000 + i, 1, T0 - DAY + i, 2, 7)) for i in range(14)]
        records = [rec(1, 1, T0, 1, 7), rec(2, 1, T0 + 1, 2, 7)]
        result = reconcile(records, history, MEMBERS)
        assert result.summary.finished_dancers == 1
        assert result.summary.new_dancers == 0

    def test_new_dancer_from_zero(self):
        records = [rec(1, 1, T0, 1, 7), rec(2, 1, T0 + 1, 1, 7)]
        result = reconcile(records, [], MEMBERS)
        assert result.summary.new_dancers == 1
        assert result.summary.zu_circles_added == 2


class TestPairSplitAcrossUploads:
    def test_stored_gold_completed_by_new_valor(self):
        valor, gold = visit(10, T0 + 60, 1, 4, 20)
        result = reconcile([valor, gold], [stored(gold)], MEMBERS)

        week = result.weeks["2025-W02"]
        assert week.rhythm == {}
        assert week.stages[(501, 1)].timestamp == T0 + 60
        assert result.summary.kh_checks_added == 1
        assert result.ledgered_ids == [10]

    def test_ledgered_valor_completed_by_new_gold(self):
        valor, gold = visit(10, T0 + 60, 1, 4, 20)
        result = reconcile([gold], [stored(valor)], MEMBERS)

        week = result.weeks["2025-W02"]
        # the lone valor line was booked as rhythm; it is taken back
        assert week.rhythm == {501: -4}
        assert week.stages[(501, 1)].valor == 4
        assert result.summary.kh_checks_added == 1
        assert result.ledgered_ids == [11]

    def test_unledgered_stored_lines_are_picked_up(self):
        records = [rec(1, 1, T0, 1, 7)]
        result = reconcile(records, [stored(r, ledgered=False) for r in records], MEMBERS)
        assert result.new_records == []
        assert result.weeks["2025-W02"].forbidden_knowledge == {501: 7}
        assert result.summary.zu_circles_added == 1
        assert result.ledgered_ids == [1]

    def test_zu_line_joined_by_gold_is_retracted(self):
        zu = rec(1, 1, T0, 1, 7)
        result = reconcile([rec(2, 2, T0, 1, 20)], [stored(zu)], MEMBERS)
        assert result.weeks["2025-W02"].forbidden_knowledge == {501: -7}
        assert result.summary.zu_circles_added == 0


class TestCountCircles:
    def test_counts_members_only(self):
        contributions = [
            Contribution(1, T0, 7, 0),
            Contribution(1, T0 + 1, 7, 0),
            Contribution(3, T0, 7, 0),
            Contribution(1, T0 + 2, 4, 0),
        ]
        assert count_circles(contributions, MEMBERS) == Counter({501: 2})
