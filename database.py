"""Engine and session factory for the finance ledger.

The process holds exactly one engine, and so one connection pool. Request
handlers, the report scheduler and migrations all draw sessions from it, and
``dispose_engine`` releases the pool on shutdown.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _build_engine(url: str) -> Engine:
    connect_args: dict[str, object] = {}
    if _is_sqlite(url):
        connect_args["check_same_thread"] = False
    built = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    if _is_sqlite(url):
        event.listen(built, "connect", _sqlite_on_connect)
    return built


def _sqlite_on_connect(dbapi_conn, _record) -> None:
    # Journal lines reference accounts; SQLite only checks that with the pragma on.
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


engine = _build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request, committed on success."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def dispose_engine() -> None:
    engine.dispose()
