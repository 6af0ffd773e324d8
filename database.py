import logging
import time
from functools import wraps
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or get_settings().database_url
    if not url.startswith("sqlite"):
        return create_engine(url)

    kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:") or url.endswith(":memory:"):
        # one shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool
    eng = create_engine(url, **kwargs)
    event.listen(eng, "connect", _enable_sqlite_pragmas)
    event.listen(eng, "begin", _emit_sqlite_begin)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    # pysqlite's implicit transactions break SAVEPOINT; BEGIN is emitted in
    # _emit_sqlite_begin instead.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _emit_sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def with_read_retry(func: Callable[..., T]) -> Callable[..., T]:
    """Retry a read on transient database errors with exponential backoff.

    Only wrap reads: writes and balance reconciliation must never be replayed.
    """

    @wraps(func)
    def wrapper(*args, **kwargs) -> T:
        settings = get_settings()
        attempts = max(1, settings.read_retry_attempts)
        for attempt in range(attempts):
            try:
                return func(*args, **kwargs)
            except OperationalError as exc:
                if attempt == attempts - 1:
                    raise
                delay = settings.read_retry_backoff_secs * (2**attempt)
                logger.warning(
                    f"read_retry: op={func.__qualname__} attempt={attempt + 1} "
                    f"delay={delay:.2f}s error={exc.orig!r}"
                )
                time.sleep(delay)
        raise AssertionError("unreachable")

    return wrapper
