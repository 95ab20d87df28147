import time
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.orm import sessionmaker, Session

from simgraph import config

_engine = None
_SessionLocal = None
_sql_logger = logging.getLogger("simgraph.db.sql")

# Queries at or above this duration log at INFO, the rest at DEBUG.
SLOW_QUERY_MS = config.SQL_SLOW_QUERY_MS


def _format_statement(statement: str, *, max_length: int = 120) -> str:
    condensed = " ".join(statement.strip().split())
    if len(condensed) <= max_length:
        return condensed
    return condensed[: max_length - 1] + "…"


def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._query_start_time = time.perf_counter()


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    if not _sql_logger.isEnabledFor(logging.DEBUG):
        return
    start = getattr(context, "_query_start_time", None)
    if start is None:
        return
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    summary = _format_statement(statement)
    level = logging.INFO if elapsed_ms >= SLOW_QUERY_MS else logging.DEBUG
    _sql_logger.log(
        level,
        "query took %.1f ms | rows=%s | %s",
        elapsed_ms,
        cursor.rowcount if cursor.rowcount is not None else "?",
        summary,
    )


def _handle_error(context):
    statement = getattr(context, "statement", "") or ""
    _sql_logger.warning(
        "SQL error during '%s': %s",
        _format_statement(statement),
        context.original_exception,
    )


def _attach_sql_logging(engine) -> bool:
    try:
        event.listen(engine, "before_cursor_execute", _before_cursor_execute)
        event.listen(engine, "after_cursor_execute", _after_cursor_execute)
        event.listen(engine, "handle_error", _handle_error)
    except InvalidRequestError:
        # create_engine may be replaced by a plain stand-in in tests.
        return False
    return True


def init_engine(database_url: Optional[str] = None):
    global _engine, _SessionLocal
    _engine = create_engine(
        database_url or config.DATABASE_URL, pool_pre_ping=True, future=True
    )
    _attach_sql_logging(_engine)
    _SessionLocal = sessionmaker(
        bind=_engine, autoflush=False, autocommit=False, future=True
    )


def reset_engine() -> None:
    global _engine, _SessionLocal
    if _engine is not None and hasattr(_engine, "dispose"):
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    if _engine is None:
        init_engine()
    return _engine


def get_sessionmaker():
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def get_db() -> Iterator[Session]:
    SessionLocal = get_sessionmaker()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for one unit of work; committed on success, rolled back on error."""
    SessionLocal = get_sessionmaker()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
