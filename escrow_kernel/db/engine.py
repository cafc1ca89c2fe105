"""
Module: escrow_kernel.db.engine
Responsibility: the process-wide ledger engine and session factory, plus
    ``session_scope`` for callers that want commit-or-rollback around a
    block.  Services never commit; the orchestrator and the release sweep
    open sessions through a factory from here.
Architecture position: Kernel > DB.  Imports only db/base.py and (inside
    create_tables/drop_tables) the model modules.

Backends:
    - PostgreSQL in production: pooled, READ COMMITTED, explicit
      ``FOR UPDATE`` / ``SKIP LOCKED`` row locks on accounts and lines.
    - SQLite in tests: the pysqlite driver is told to emit BEGIN itself so
      ``begin_nested`` savepoints work; row locks are ignored.

Failure modes:
    - RuntimeError from get_engine/get_session/get_session_factory before
      init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from escrow_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Ledger database not initialized; call init_engine_from_url() first."


def enable_sqlite_savepoints(engine: Engine) -> None:
    """Make pysqlite emit BEGIN itself so SAVEPOINT/ROLLBACK TO work.

    The stock driver defers BEGIN until the first DML statement, which
    leaves a leading SAVEPOINT outside any transaction.
    """

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """Create an engine for ``database_url`` without touching module state."""
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, echo=echo)
        enable_sqlite_savepoints(engine)
        return engine

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
) -> Engine:
    """
    Build the module engine and session factory, replacing any previous one.

    Args:
        database_url: PostgreSQL URL in production, SQLite URL in tests.
        echo: Log every SQL statement.
        pool_size, max_overflow: PostgreSQL pool sizing.
    """
    global _engine, _SessionFactory

    reset_engine()
    _engine = build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The factory the orchestrator and sweep open their units with."""
    if _SessionFactory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

    Uses ``factory`` when given, the module factory otherwise.

        with session_scope(factory) as session:
            AccountSelector(session).balance(account_id)
    """
    session = factory() if factory is not None else get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    """Create every ledger table on ``engine`` (default: module engine)."""
    from escrow_kernel.db.base import Base
    import escrow_kernel.models  # noqa: F401  (registers all tables)

    Base.metadata.create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every ledger table.  Tests only."""
    from escrow_kernel.db.base import Base
    import escrow_kernel.models  # noqa: F401

    Base.metadata.drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the module engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
