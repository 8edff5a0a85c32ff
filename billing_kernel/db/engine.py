"""
Engine construction and transaction scope for the billing store.

There is no module-level engine. Callers build one with ``build_engine``
(or ``init_engine_from_url``, which also creates the tables and returns a
session factory) and hand the factory to the services, so every operation
and every worker thread opens its own session.

SQLite gets two adjustments: ``check_same_thread=False`` for the worker
threads, and SQLAlchemy-issued BEGIN so SAVEPOINT works for sequence
counters and document batches. In-memory SQLite also shares one
connection through StaticPool, otherwise each session would see an empty
database.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from billing_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")


def _sqlite_engine(url, echo: bool) -> Engine:
    options: dict = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    engine = create_engine(url, echo=echo, **options)

    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str, echo: bool = False, **pool_options) -> Engine:
    """Engine for ``database_url``; ``pool_options`` apply to server databases only."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return _sqlite_engine(url, echo)
    pool_options.setdefault("pool_pre_ping", True)
    return create_engine(url, echo=echo, **pool_options)


def create_tables(engine: Engine) -> None:
    """Create the document and counter tables if missing."""
    from billing_kernel.db.base import Base
    from billing_kernel.models import StoredDocument  # noqa: F401
    from billing_kernel.services.sequence_service import SequenceCounter  # noqa: F401

    Base.metadata.create_all(engine)


def init_engine_from_url(database_url: str, echo: bool = False, **pool_options) -> sessionmaker[Session]:
    """
    Application bootstrap: engine, tables, logging.

    Returns the session factory the services take. Calling it twice builds
    two independent engines.
    """
    engine = build_engine(database_url, echo=echo, **pool_options)
    create_tables(engine)
    configure_logging()
    logger.info("engine_initialized", extra={"dialect": engine.dialect.name})
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """One transaction: commit on exit, roll back and re-raise on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()
