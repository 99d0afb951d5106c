"""SQLAlchemy engine and session factory for the ``sql`` storage backend."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

SQLITE_BUSY_TIMEOUT = 30


def _is_memory_sqlite(url: str) -> bool:
    return ":memory:" in url or url.rstrip("/") == "sqlite:"


def make_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads.

    File-backed SQLite opens every transaction with ``BEGIN IMMEDIATE`` so
    that concurrent writers queue on the database lock instead of failing
    when they upgrade from a read.
    """
    kwargs: dict = {"echo": echo, "future": True}
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    kwargs["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
    if _is_memory_sqlite(url):
        kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def shares_one_connection(engine: Engine) -> bool:
    """True when every session runs on the same DBAPI connection."""
    return isinstance(engine.pool, StaticPool)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


def create_all(engine: Engine) -> None:
    # Import models so their tables register on Base.metadata
    from shipping_engine import models  # noqa: F401

    Base.metadata.create_all(engine)
