import logging

import pytest
from sqlalchemy import false

from models import ScoreEntry
from core.completion_barrier import CompletionBarrier
from core.exceptions import InvalidUnit, RoundClosed, RoundNotFound, UnknownParticipant
import core.score_ledger as ledger_module
from core.score_ledger import ScoreLedger


def test_second_write_to_same_hole_overwrites(db, make_round, clock):
    flight = make_round(devices=1)
    player = flight.participant_ids[0]

    first, created = ScoreLedger.upsert(db, flight.id, player, 3, 5, "tablet-1", {"putts": 2, "bunker": True})
    first_id = first.id
    assert created is True

    clock.advance(60)
    second, created = ScoreLedger.upsert(db, flight.id, player, 3, 4, "tablet-1", {"putts": 1})
    assert created is False
    assert second.id == first_id

    rows = db.query(ScoreEntry).filter(ScoreEntry.round_id == flight.id).all()
    assert len(rows) == 1
    assert rows[0].value == 4
    assert rows[0].putts == 1
    # Overwrite replaces the whole entry, stale metrics do not survive
    assert rows[0].bunker is None


def test_write_rejected_after_round_completed(db, make_round):
    flight = make_round(devices=1)
    ScoreLedger.upsert(db, flight.id, flight.participant_ids[0], 1, 4, "tablet-1")
    CompletionBarrier.mark_device_finished(db, flight.id, "tablet-1")

    with pytest.raises(RoundClosed):
        ScoreLedger.upsert(db, flight.id, flight.participant_ids[0], 2, 4, "tablet-1")

    # Completed scores are retained read-only
    entries = ScoreLedger.entries_for_round(db, flight.id)
    assert [(e.unit, e.value) for e in entries] == [(1, 4)]


def test_unknown_participant(db, make_round):
    flight = make_round(devices=1)
    other = make_round(devices=1, name="Flight B")

    with pytest.raises(UnknownParticipant):
        ScoreLedger.upsert(db, flight.id, "nobody", 1, 4, "tablet-1")
    with pytest.raises(UnknownParticipant):
        ScoreLedger.upsert(db, flight.id, other.participant_ids[0], 1, 4, "tablet-1")


def test_unit_outside_sequence(db, make_round):
    flight = make_round(devices=1, total_units=9)
    with pytest.raises(InvalidUnit):
        ScoreLedger.upsert(db, flight.id, flight.participant_ids[0], 10, 4, "tablet-1")
    with pytest.raises(InvalidUnit):
        ScoreLedger.upsert(db, flight.id, flight.participant_ids[0], 0, 4, "tablet-1")


def test_unknown_round(db):
    with pytest.raises(RoundNotFound):
        ScoreLedger.upsert(db, "missing", "nobody", 1, 4, "tablet-1")


def test_participant_entries_ordered_by_unit(db, make_round):
    flight = make_round(devices=1, start_unit=8)
    player = flight.participant_ids[0]
    for unit, value in [(8, 4), (9, 5), (1, 3), (18, 6)]:
        ScoreLedger.upsert(db, flight.id, player, unit, value, "tablet-1")

    entries = ScoreLedger.entries_for_participant(db, flight.id, player)
    assert [e.unit for e in entries] == [1, 8, 9, 18]


def test_aggregate_by_range_without_data(db, make_round):
    flight = make_round(devices=1)
    result = ScoreLedger.aggregate_by_range(db, flight.id, flight.participant_ids[0], 10, 18)
    assert result.total == 0
    assert result.entries == 0
    assert result.has_data is False


def test_subtotals_split_front_and_back(db, make_round):
    flight = make_round(devices=1)
    player = flight.participant_ids[0]
    for unit in range(1, 10):
        ScoreLedger.upsert(db, flight.id, player, unit, 4, "tablet-1")
    ScoreLedger.upsert(db, flight.id, player, 10, 5, "tablet-1")

    bands = ScoreLedger.subtotals(db, flight.id, player)
    assert (bands["front"].total, bands["front"].entries) == (36, 9)
    assert (bands["back"].total, bands["back"].entries, bands["back"].has_data) == (5, 1, True)
    assert bands["total"].total == 41


def test_hole_completion_counts_participants(db, make_round):
    flight = make_round(devices=2, per_device=2)
    first, second = flight.participant_ids[:2]

    ScoreLedger.upsert(db, flight.id, first, 1, 4, "tablet-1")
    ScoreLedger.upsert(db, flight.id, second, 1, 5, "tablet-1")
    completion = ScoreLedger.hole_completion(db, flight.id, 1)
    assert (completion.completed_count, completion.total_participants) == (2, 4)
    assert completion.all_completed is False

    for player in flight.participant_ids[2:]:
        ScoreLedger.upsert(db, flight.id, player, 1, 4, "tablet-2")
    assert ScoreLedger.hole_completion(db, flight.id, 1).all_completed is True


def test_losing_a_concurrent_first_write_retries_as_overwrite(db, make_round, monkeypatch, caplog):
    flight = make_round(devices=2)
    player = flight.participant_ids[0]
    # The other tablet's first write has already committed
    ScoreLedger.upsert(db, flight.id, player, 4, 5, "tablet-1")

    real_lock = ledger_module.with_score_entry_lock
    misses = []

    def lock_misses_once(round_id, participant_id, unit, session):
        query = real_lock(round_id, participant_id, unit, session)
        if not misses:
            misses.append(unit)
            # Looks up before the competing insert is visible
            return query.filter(false())
        return query

    monkeypatch.setattr(ledger_module, "with_score_entry_lock", lock_misses_once)

    with caplog.at_level(logging.INFO):
        entry, created = ScoreLedger.upsert(db, flight.id, player, 4, 3, "tablet-2")

    assert misses == [4]
    assert created is False
    rows = db.query(ScoreEntry).filter(ScoreEntry.round_id == flight.id).all()
    assert len(rows) == 1
    assert (rows[0].value, rows[0].recorded_by) == (3, "tablet-2")
    assert rows[0].id == entry.id
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
    assert any(r.levelno == logging.WARNING for r in caplog.records)
