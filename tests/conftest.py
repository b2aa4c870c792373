# tests/conftest.py

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from planner_core.core.config import Settings
from planner_core.crud import event as event_crud
from planner_core.models import Base
from planner_core.worker import create_celery_app


# --- In-memory state store ---
# StaticPool keeps a single connection so every session sees the same
# in-memory database.
@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope="function")
def make_event(session_factory):
    """Creates a committed event and returns its id."""

    def _make(capacity: int = 100, event_id: str = None, name: str = "Test Event") -> str:
        session = session_factory()
        try:
            evt = event_crud.create(session, name=name, capacity=capacity, event_id=event_id)
            session.commit()
            return evt.id
        finally:
            session.close()

    return _make


# --- Celery on the in-process memory broker ---
# The memory transport keeps its queues per process, so tests that run a
# worker give their queue a name of its own.
@pytest.fixture(scope="function")
def celery_app():
    app = create_celery_app(Settings(), broker_url="memory://", backend_url="cache+memory://")
    app.conf.broker_transport_options = {"polling_interval": 0.05}
    app.conf.worker_enable_remote_control = False
    yield app
    app.close()


# --- Job history and stats ---
@pytest.fixture(scope="function")
def fake_redis():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
