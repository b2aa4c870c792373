# planner_core/db/session.py
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from planner_core.core.config import settings


def build_engine(url: str = None) -> Engine:
    """
    Creates the engine with the pool bounds and server-side timeouts.

    The pool is bounded (DB_POOL_MAX, no overflow), acquisition waits at most
    DB_POOL_TIMEOUT_SECONDS, and idle connections are recycled after
    DB_IDLE_TIMEOUT_SECONDS. PostgreSQL gets statement/lock timeouts through
    the connection options; other dialects (SQLite in tests) use defaults.
    """
    url = url or settings.DATABASE_URL
    if not url.startswith("postgresql"):
        return create_engine(url, pool_pre_ping=True)

    options = (
        f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS} "
        f"-c lock_timeout={settings.DB_QUERY_TIMEOUT_MS}"
    )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_MAX,
        max_overflow=0,
        pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
        pool_recycle=settings.DB_IDLE_TIMEOUT_SECONDS,
        connect_args={"options": options},
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# The engine is created lazily by SQLAlchemy on first connect, so importing
# this module never opens a connection.
engine = build_engine()
SessionLocal = build_session_factory(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always returned to the pool, even if the request failed.
        db.close()
