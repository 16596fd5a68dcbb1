"""
Module: patronage_kernel.db.engine
Responsibility: owns the process-wide SQLAlchemy engine and session factory
    and the commit-or-rollback ``session_scope``.
Architecture position: Kernel > DB.  Imports models lazily (create/drop
    only); nothing above the kernel is imported here.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED; the stronger guarantees the engine
      needs come from the partial unique index on the period key, guarded
      UPDATEs on dividend records and FOR UPDATE on distribution rows.
    - SQLite opens every transaction with BEGIN IMMEDIATE and enforces
      foreign keys, so concurrent distribution runs queue on the write lock
      rather than failing a lock upgrade halfway through.

Failure modes:
    - RuntimeError when the factory or engine is requested before
      init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from patronage_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def _begin_immediate(engine: Engine, busy_timeout_ms: int) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite must not emit its own BEGIN; _on_begin does.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout_ms: int = 30000,
) -> Engine:
    """
    Create the engine and session factory, replacing any previous ones.

    ``database_url`` is a PostgreSQL URL in production or a SQLite file URL
    for tests and local runs.  Sessions are created with
    ``expire_on_commit=False`` so DTOs can be built after a commit.
    """
    global _engine, _session_factory

    options = dict(
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
    )
    sqlite = database_url.startswith("sqlite")
    if sqlite:
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": sqlite_busy_timeout_ms / 1000,
        }
    else:
        options.update(
            pool_pre_ping=True,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(database_url, **options)
    if sqlite:
        _begin_immediate(_engine, sqlite_busy_timeout_ms)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url()")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Return the shared session factory.

    Collaborators running on worker threads open their own short-lived
    sessions from it; a Session is never shared between threads.
    """
    if _session_factory is None:
        raise RuntimeError("Database engine not initialized; call init_engine_from_url()")
    return _session_factory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """
    Yield a session that commits on success and rolls back on any error.

    This is the unit of atomicity for a distribution: the period row and
    all of its dividend records are committed together or not at all.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from patronage_kernel.db.base import Base
    import patronage_kernel.models  # noqa: F401  (registers every table)

    return Base.metadata


def create_tables() -> None:
    metadata = _metadata()
    metadata.create_all(get_engine())
    logger.info("tables_created", extra={"tables": sorted(metadata.tables)})


def drop_tables() -> None:
    """Drop every engine table (tests and ``init_db.py --reset``)."""
    _metadata().drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)
