from core.completion_barrier import CompletionBarrier
from core.score_ledger import ScoreLedger
from services.history_service import get_device_round_history


def _complete(db, flight, strokes):
    for unit, value in enumerate(strokes, start=1):
        ScoreLedger.upsert(db, flight.id, flight.participant_ids[0], unit, value, "tablet-1")
    CompletionBarrier.mark_device_finished(db, flight.id, "tablet-1")


def test_limit_keeps_newest_rounds(db, make_round, clock):
    flights = []
    for name in ("Monday", "Tuesday", "Wednesday"):
        flight = make_round(devices=1, name=name)
        _complete(db, flight, [4, 5])
        flights.append(flight)
        clock.advance(86400)

    history = get_device_round_history("tablet-1", db, limit=2)
    assert [h["name"] for h in history] == ["Wednesday", "Tuesday"]
    assert all(h["total_strokes"] == 9 for h in history)

    assert get_device_round_history("tablet-1", db, limit=0) == []


def test_other_devices_rounds_are_excluded(db, make_round):
    mine = make_round(devices=1, name="Mine")
    _complete(db, mine, [3])

    history = get_device_round_history("tablet-7", db)
    assert history == []
