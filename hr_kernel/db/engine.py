"""
Module: hr_kernel.db.engine
Responsibility: Build the SQLAlchemy engine, hold the process-wide engine and
    session factory, and provide ``session_scope`` for unit-of-work blocks.
Architecture position: Kernel > DB.  Imports db/base.py and db/immutability.py;
    table creation imports models/ lazily so their metadata is registered.

Backends:
    - PostgreSQL: READ COMMITTED on a pre-pinged QueuePool.  Lost updates are
      prevented by the versioned UPDATE in the instance store, not by the
      isolation level.
    - SQLite (tests, single-node installs): WAL journal, a busy timeout so
      concurrent writers wait for the lock, and foreign keys switched on.

Either way the append-only listeners on transition records are installed
before the first engine is returned.

Calling get_engine/get_session/get_session_factory before
init_engine_from_url() raises RuntimeError.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from hr_kernel.db.immutability import register_immutability_listeners
from hr_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _sqlite_engine(database_url: str, echo: bool, busy_timeout_ms: int) -> Engine:
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": busy_timeout_ms / 1000},
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        for pragma in ("journal_mode=WAL", f"busy_timeout={busy_timeout_ms}", "foreign_keys=ON"):
            cursor.execute(f"PRAGMA {pragma}")
        cursor.close()

    return engine


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout_ms: int = 30000,
) -> Engine:
    """
    Create an engine for ``database_url``.  Module state is left alone, so
    tests can hold several engines side by side.

    The pool arguments apply to server databases only.
    ``sqlite_busy_timeout_ms`` bounds how long a SQLite writer waits for
    the database lock before failing.
    """
    register_immutability_listeners()

    if database_url.startswith("sqlite"):
        return _sqlite_engine(database_url, echo, sqlite_busy_timeout_ms)

    return create_engine(
        database_url,
        echo=echo,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(database_url: str, echo: bool = False, **kwargs) -> Engine:
    """Install the process-wide engine and session factory, replacing any previous one."""
    global _engine, _SessionFactory

    _engine = build_engine(database_url, echo=echo, **kwargs)
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": _engine.dialect.name, "echo": echo})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Factory bound to the process-wide engine; one session per unit of work."""
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
    Unit of work: commit when the block exits normally, roll back and
    re-raise when it raises.  The session is closed either way.

        with session_scope(factory) as session:
            InstanceStore(session).create(...)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def _metadata():
    from hr_kernel.db.base import Base
    import hr_kernel.models  # noqa: F401  (registers the kernel tables)

    return Base.metadata


def create_tables(engine: Engine | None = None) -> None:
    """Create every registered workflow table that does not exist yet."""
    _metadata().create_all(engine or get_engine())


def drop_tables(engine: Engine | None = None) -> None:
    """Drop every registered table.  Test teardown only."""
    _metadata().drop_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the process-wide engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
