from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker


Base = declarative_base()

engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def _enable_sqlite_savepoints(eng: Engine) -> None:
    # pysqlite issues its own BEGIN lazily, which breaks SAVEPOINT; take over
    # transaction control so nested transactions behave like other backends.
    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine(database_url: str) -> Engine:
    global engine, SessionLocal

    url = str(database_url or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is required")

    is_sqlite = url.startswith("sqlite")
    kwargs: dict = {"pool_pre_ping": True}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}

    eng = create_engine(url, **kwargs)
    if is_sqlite:
        _enable_sqlite_savepoints(eng)

    engine = eng
    SessionLocal = sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)
    return eng


def get_engine() -> Engine:
    if engine is None:
        raise RuntimeError("DB not initialized")
    return engine


@contextmanager
def session_scope(*, read_only: bool = False) -> Iterator[Session]:
    """
    Transaction boundary for one unit of work.

    Read-only scopes never commit; closing the session releases the connection
    and its transaction. Separate scopes share no snapshot.
    """
    if SessionLocal is None:
        raise RuntimeError("DB not initialized")

    db = SessionLocal()
    try:
        yield db
        if not read_only:
            db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def ping_db() -> bool:
    if engine is None:
        return False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
