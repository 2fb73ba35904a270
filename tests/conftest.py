import os
import sys
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Ensure the project root (containing main.py / core / services) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from database import Base, get_db  # noqa: E402
from main import app  # noqa: E402
import models  # noqa: E402,F401
from core.round_manager import RoundManager  # noqa: E402
from services import clock_service  # noqa: E402


class FakeClock:
    def __init__(self, start):
        self.current = start

    def now(self):
        return self.current

    def advance(self, seconds):
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


@pytest.fixture()
def engine(tmp_path):
    # File-backed SQLite so every session gets its own connection,
    # the way concurrent requests would against a real store
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'flight_scoring_test.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def clock(monkeypatch):
    fake = FakeClock(datetime(2026, 3, 14, 7, 30, tzinfo=timezone.utc))
    monkeypatch.setattr(clock_service, "utcnow", fake.now)
    return fake


@pytest.fixture()
def make_round(db):
    """Create a round with `devices` tablets and `per_device` participants on each."""

    def _make(devices=2, per_device=1, start_unit=1, total_units=18, name="Flight A"):
        device_ids = [f"tablet-{i + 1}" for i in range(devices)]
        round_obj = RoundManager.create_round(
            db,
            start_unit=start_unit,
            total_units=total_units,
            name=name,
            devices=[(device_id, f"Tablet {i + 1}") for i, device_id in enumerate(device_ids)]
        )
        participant_ids = []
        participants_by_device = {}
        for device_id in device_ids:
            for _ in range(per_device):
                participant = RoundManager.register_participant(
                    db, round_obj.id, device_id, f"Player {len(participant_ids) + 1}"
                )
                participant_ids.append(participant.id)
                participants_by_device.setdefault(device_id, []).append(participant.id)
        return SimpleNamespace(
            id=round_obj.id,
            device_ids=device_ids,
            participant_ids=participant_ids,
            participants_by_device=participants_by_device
        )

    return _make
