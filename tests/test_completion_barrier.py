import itertools

import pytest

from models import DeviceProgress, EventLog, Round, RoundStatus
from core.completion_barrier import CompletionBarrier
from core.completion_saga import CompletionSaga
from core.exceptions import RoundNotFound, UnknownDevice


@pytest.fixture()
def saga_runs(monkeypatch):
    """Record every CompletionSaga.run invocation while still running it."""
    runs = []
    original = CompletionSaga.run

    def counting_run(db, round_id):
        runs.append(round_id)
        return original(db, round_id)

    monkeypatch.setattr(CompletionSaga, "run", counting_run)
    return runs


def _completion_events(db, round_id):
    return db.query(EventLog).filter(
        EventLog.round_id == round_id,
        EventLog.event_type == "ROUND_COMPLETED"
    ).count()


def test_two_device_walkthrough(db, make_round, saga_runs):
    flight = make_round(devices=2)

    first = CompletionBarrier.mark_device_finished(db, flight.id, "tablet-1")
    assert (first.round_completed, first.pending_devices) == (False, 1)
    assert first.newly_finished is True
    assert saga_runs == []

    second = CompletionBarrier.mark_device_finished(db, flight.id, "tablet-2")
    assert (second.round_completed, second.pending_devices) == (True, 0)
    assert second.triggered_completion is True
    assert second.cleanup_pending is False
    assert saga_runs == [flight.id]

    repeat = CompletionBarrier.mark_device_finished(db, flight.id, "tablet-1")
    assert repeat.round_completed is True
    assert repeat.newly_finished is False
    assert repeat.triggered_completion is False
    assert saga_runs == [flight.id]
    assert _completion_events(db, flight.id) == 1


def test_repeat_mark_keeps_pending_count(db, make_round, saga_runs):
    flight = make_round(devices=3)

    once = CompletionBarrier.mark_device_finished(db, flight.id, "tablet-2")
    twice = CompletionBarrier.mark_device_finished(db, flight.id, "tablet-2")

    assert once.pending_devices == twice.pending_devices == 2
    assert once.round_completed is twice.round_completed is False
    assert twice.newly_finished is False

    device = db.query(DeviceProgress).filter(
        DeviceProgress.round_id == flight.id,
        DeviceProgress.device_id == "tablet-2"
    ).one()
    finished_at = device.finished_at
    CompletionBarrier.mark_device_finished(db, flight.id, "tablet-2")
    db.refresh(device)
    assert device.finished_at == finished_at
    assert saga_runs == []


def test_unknown_device_is_rejected(db, make_round):
    flight = make_round(devices=2)
    with pytest.raises(UnknownDevice):
        CompletionBarrier.mark_device_finished(db, flight.id, "tablet-9")
    with pytest.raises(RoundNotFound):
        CompletionBarrier.mark_device_finished(db, "missing", "tablet-1")


@pytest.mark.parametrize("device_count", [1, 2, 3, 4])
def test_any_arrival_order_completes_exactly_once(db, make_round, saga_runs, device_count):
    for order in itertools.permutations(range(device_count)):
        flight = make_round(devices=device_count)
        results = [
            CompletionBarrier.mark_device_finished(db, flight.id, flight.device_ids[i])
            for i in order
        ]

        assert [r.pending_devices for r in results] == list(range(device_count - 1, -1, -1))
        assert [r.triggered_completion for r in results] == [False] * (device_count - 1) + [True]
        assert saga_runs.count(flight.id) == 1
        assert _completion_events(db, flight.id) == 1


@pytest.mark.parametrize("device_count", [2, 3, 4])
def test_simultaneous_last_devices_race_on_cas(session_factory, make_round, saga_runs, device_count):
    """Every device flips, every device sees zero pending, every device tries the CAS."""
    for order in itertools.permutations(range(device_count)):
        flight = make_round(devices=device_count)
        sessions = [session_factory() for _ in range(device_count)]
        try:
            for i in order:
                assert CompletionBarrier.flip_device_finished(sessions[i], flight.id, flight.device_ids[i])

            assert [CompletionBarrier.pending_device_count(s, flight.id) for s in sessions] == [0] * device_count

            winners = [
                i for i in order
                if CompletionBarrier.try_close(sessions[i], flight.id)
            ]
            assert len(winners) == 1

            CompletionSaga.run(sessions[winners[0]], flight.id)

            check = sessions[0]
            round_obj = check.query(Round).filter(Round.id == flight.id).one()
            check.refresh(round_obj)
            assert round_obj.status == RoundStatus.COMPLETED
            assert _completion_events(check, flight.id) == 1
            assert saga_runs.count(flight.id) == 1

            # Late repeats from the losers observe completion without cleanup
            for i in order:
                result = CompletionBarrier.mark_device_finished(sessions[i], flight.id, flight.device_ids[i])
                assert result.round_completed is True
                assert result.triggered_completion is False
            assert saga_runs.count(flight.id) == 1
        finally:
            for s in sessions:
                s.close()


def test_cas_refuses_while_devices_pending(session_factory, make_round):
    flight = make_round(devices=2)
    session = session_factory()
    try:
        CompletionBarrier.flip_device_finished(session, flight.id, "tablet-1")
        assert CompletionBarrier.try_close(session, flight.id) is False
    finally:
        session.close()


def test_repeat_mark_closes_barrier_left_open_by_interrupted_call(db, make_round, saga_runs):
    flight = make_round(devices=2)
    CompletionBarrier.mark_device_finished(db, flight.id, "tablet-1")
    # The second device's flip committed but the caller died before the CAS
    assert CompletionBarrier.flip_device_finished(db, flight.id, "tablet-2") is True
    assert saga_runs == []

    retry = CompletionBarrier.mark_device_finished(db, flight.id, "tablet-2")
    assert retry.newly_finished is False
    assert retry.round_completed is True
    assert retry.triggered_completion is True
    assert saga_runs == [flight.id]


def test_round_status_view(db, make_round, clock):
    flight = make_round(devices=2, per_device=2)
    CompletionBarrier.mark_device_finished(db, flight.id, "tablet-2")

    view = CompletionBarrier.get_round_status(db, flight.id)
    assert view.status == RoundStatus.OPEN
    assert [d.device_id for d in view.devices] == ["tablet-1", "tablet-2"]
    assert [d.finished for d in view.devices] == [False, True]
    assert view.devices[0].finished_at is None
    assert view.devices[1].finished_at is not None
    assert view.all_finished is False
    assert (view.total_devices, view.finished_devices) == (2, 1)
    assert view.locked_participant_ids == flight.participants_by_device["tablet-2"]

    CompletionBarrier.mark_device_finished(db, flight.id, "tablet-1")
    view = CompletionBarrier.get_round_status(db, flight.id)
    assert view.all_finished is True
    assert view.status == RoundStatus.COMPLETED
    assert view.cleanup_pending is False


def test_round_without_devices_is_never_all_finished(db):
    from core.round_manager import RoundManager

    round_obj = RoundManager.create_round(db, start_unit=1, total_units=9)
    view = CompletionBarrier.get_round_status(db, round_obj.id)
    assert view.all_finished is False
    assert view.devices == []
