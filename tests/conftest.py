"""
Shared fixtures: temporary SQLite database, fake broadcaster, controllable clock
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

import models  # noqa: F401  (registers tables on Base.metadata)
from database import Base, build_engine
from core.subscriptions import SubscriptionRegistry
from core.sync_engine import SyncEngine


class FakeBroadcaster:
    """Records every egress call instead of sending it"""

    def __init__(self):
        self.updates = []
        self.failures = []

    async def record_updated(self, connection_id, event):
        self.updates.append((connection_id, event))

    async def write_failed(self, connection_id, reason, record_id=None):
        self.failures.append((connection_id, reason, record_id))

    def updates_for(self, connection_id):
        return [event for target, event in self.updates if target == connection_id]


class FakeClock:

    def __init__(self, start=datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds=1):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'boss_tracker_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sync_engine(session_factory, registry, broadcaster, clock):
    return SyncEngine(session_factory, registry, broadcaster, clock=clock)


@pytest.fixture
def api_app(session_factory, sync_engine):
    from main import app
    from database import get_db
    from api.websocket import get_sync_engine

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_engine] = lambda: sync_engine
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_app):
    from fastapi.testclient import TestClient

    return TestClient(api_app)
