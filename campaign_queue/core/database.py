"""Engine, session factory and transaction scope for the shared job store."""

from contextlib import contextmanager
from functools import lru_cache
from typing import Callable, Iterator, Optional, Tuple

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from campaign_queue.core.config import settings
from campaign_queue.core.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()

SessionFactory = Callable[[], Session]


def _configure_sqlite(engine: Engine) -> None:
    """Make SQLite behave like a store that many workers can share.

    pysqlite's implicit transactions are disabled so that SQLAlchemy controls
    BEGIN itself, and every transaction starts with ``BEGIN IMMEDIATE`` so
    writers are serialised up front instead of failing on lock upgrade.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(db_url: Optional[str] = None, **kwargs) -> Engine:
    """Create an engine for ``db_url`` (defaults to ``settings.DATABASE_URL``)."""
    db_url = db_url or settings.DATABASE_URL
    if db_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", 30)
        engine = create_engine(db_url, connect_args=connect_args, **kwargs)
        _configure_sqlite(engine)
    else:
        kwargs.setdefault("pool_size", settings.DB_POOL_SIZE)
        kwargs.setdefault("max_overflow", settings.DB_POOL_SIZE)
        engine = create_engine(db_url, pool_pre_ping=True, **kwargs)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_database(db_url: Optional[str] = None) -> Tuple[Engine, sessionmaker]:
    """Initialize the database connection."""
    try:
        engine = create_db_engine(db_url)
        SessionLocal = create_session_factory(engine)
        logger.info("Database initialized successfully.", extra={"component": "database", "dialect": engine.dialect.name})
        return engine, SessionLocal
    except Exception as e:
        error_msg = f"Failed to initialize database: {str(e)}"
        logger.error(error_msg, extra={"component": "database"})
        raise RuntimeError(error_msg) from e


@lru_cache(maxsize=1)
def _default_database() -> Tuple[Engine, sessionmaker]:
    return init_database()


def get_engine() -> Engine:
    return _default_database()[0]


def get_session_factory() -> sessionmaker:
    return _default_database()[1]


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the campaigns, jobs and job_steps tables if they do not exist."""
    # Register models on Base.metadata
    from campaign_queue import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


@contextmanager
def transaction(session_factory: Optional[SessionFactory] = None) -> Iterator[Session]:
    """Run one logical unit of work in its own session.

    Commits when the block exits normally (including an early ``return``) and
    rolls back on any exception, which is re-raised. The session is always
    closed. Nested work should receive the yielded session rather than open
    another transaction.
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
