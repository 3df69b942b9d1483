"""Engine and session management.

One engine per process, built from DATABASE_URL. Callers open a unit of work
with ``get_db()``; it commits when the block exits cleanly and rolls back when
it raises.
"""

from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from brokersync.config import get_settings


def build_engine(database_url: str, **kwargs: Any) -> Engine:
    """Create an engine, applying the SQLite connection options when needed.

    SQLite connections are shared with FastAPI's worker threads and get
    foreign-key enforcement switched on for every new connection.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, **kwargs)

    connect_args = dict(kwargs.pop("connect_args", {}))
    connect_args.setdefault("check_same_thread", False)
    sqlite_engine = create_engine(database_url, connect_args=connect_args, **kwargs)

    @event.listens_for(sqlite_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


def build_session_factory(bind: Engine) -> sessionmaker:
    # Loaded rows stay readable after the session commits or closes
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = build_session_factory(engine)


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """Open a session for one unit of work.

    Usage:
        with get_db() as db:
            BrokerSyncService(db).sync_connection(connection_id)
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """Create any missing tables."""
    from .models import Base

    Base.metadata.create_all(bind=bind or engine)
