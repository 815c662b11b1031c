"""
Test configuration. Puts the repo root on sys.path and swaps MongoDB for
mongomock so no test touches a live database.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import mongomock
import pytest
import pytz

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

LAGOS = pytz.timezone("Africa/Lagos")


def lagos(year, month, day, hour=0, minute=0, second=0):
    """Aware UTC datetime for a wall-clock time in the facility timezone."""
    return LAGOS.localize(datetime(year, month, day, hour, minute, second)).astimezone(timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["shopfinder_test"]


@pytest.fixture
def persistence(mongo_db):
    from database import MongoPersistence
    return MongoPersistence(mongo_db)


@pytest.fixture
def clock():
    # 2026-10-19 is a Monday
    return FixedClock(lagos(2026, 10, 19, 8, 30))


@pytest.fixture
def client(mongo_db, clock, monkeypatch):
    from fastapi.testclient import TestClient

    import database
    import main

    monkeypatch.setattr(database, "db", mongo_db)
    monkeypatch.setattr(main, "db", mongo_db)
    monkeypatch.setattr(main, "ENABLE_TICKS", False)

    with TestClient(main.app) as c:
        main.app.state.driver.clock = clock
        yield c
