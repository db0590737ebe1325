"""
Module: equipment_kernel.db.engine
Responsibility: SQLAlchemy engine initialization and session factory management.
    This is the single point of database connection configuration for the
    engine; transactions are owned by the TransactionCoordinator.
Architecture position: Kernel > DB.  May import from db/base.py.
    MUST NOT import from services/, selectors/, domain/, or outer layers
    (except create_tables, which imports models to populate metadata).

Invariants enforced:
    - PostgreSQL: READ COMMITTED isolation with explicit row-level locking
      (SELECT ... FOR UPDATE) where read-check-write must be serialized.
      A server-side lock_timeout bounds every lock wait.
    - SQLite: every transaction opens with BEGIN IMMEDIATE, so writers
      serialize at transaction start; the busy timeout bounds the wait.
    - No operation blocks indefinitely: lock waits end in an error that the
      TransactionCoordinator maps to ConcurrentModificationError.

Failure modes:
    - RuntimeError if get_engine/get_session_factory called before
      init_engine_from_url().
    - OperationalError on lock timeout / busy database (mapped upstream).
"""

import atexit

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from equipment_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# Module-level engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_locking(engine: Engine) -> None:
    """Take over transaction control from pysqlite and begin IMMEDIATE.

    pysqlite defers BEGIN until the first DML statement, so a plain
    read-then-write transaction could read stale rows.  Emitting
    BEGIN IMMEDIATE ourselves acquires the write lock before the first
    read, which makes SQLite transactions serializable.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    lock_timeout_seconds: float = 10.0,
) -> Engine:
    """
    Initialize the SQLAlchemy engine from a database URL.

    Postconditions: Module-level _engine and _SessionFactory are initialized.
        All subsequent get_engine/get_session_factory calls use this engine.

    Args:
        database_url: PostgreSQL or SQLite connection URL.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool.
        max_overflow: Max connections beyond pool_size.
        pool_pre_ping: If True, test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
        lock_timeout_seconds: Upper bound on any row/database lock wait.

    Returns:
        SQLAlchemy Engine instance.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()

    if dialect == "sqlite":
        in_memory = url.database in (None, "", ":memory:")
        kwargs: dict = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": lock_timeout_seconds,
            },
        }
        if in_memory:
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(database_url, echo=echo, **kwargs)
        _install_sqlite_locking(_engine)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
            connect_args={
                "options": f"-c lock_timeout={int(lock_timeout_seconds * 1000)}",
            },
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "lock_timeout_seconds": lock_timeout_seconds,
            "echo": echo,
        },
    )

    return _engine


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Each concurrent caller (HTTP handler thread) needs its own session.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def create_tables() -> None:
    """
    Create all tables defined in the models.

    Postconditions: All engine tables exist in the database.
    """
    from equipment_kernel.db.base import Base
    import equipment_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from equipment_kernel.db.base import Base
    import equipment_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """
    Reset the engine and session factory.

    Useful for test cleanup.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    global _engine
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)


def init_engine_from_settings(settings) -> Engine:
    """Initialize the engine from an ``EngineSettings`` instance."""
    configure_logging(level=settings.log_level)
    return init_engine_from_url(
        settings.database_url,
        echo=settings.echo,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        lock_timeout_seconds=settings.lock_timeout_seconds,
    )
