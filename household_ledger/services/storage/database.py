"""
SQLAlchemy engine/session helpers for the ledger database.

Usage
-----
database = LedgerDatabase()
database.create_schema()

with database.session_scope() as s:
    s.execute(...)

SQLite note: pysqlite's own transaction handling defers BEGIN until the
first write, which would let two read-modify-write sequences interleave.
We take over transaction control. Write sessions start with BEGIN IMMEDIATE
so writers to the same file are serialized; read sessions start with a
plain deferred BEGIN and never wait on a writer's lock.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

import structlog
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from household_ledger.config import get_settings
from household_ledger.services.storage.interface import ConnectionError
from household_ledger.services.storage.tables import Base


logger = structlog.get_logger(__name__)

# Execution option marking connections that will write
_WRITE_OPTION = "ledger_write"


def _configure_sqlite(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(_WRITE_OPTION):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


class LedgerDatabase:
    """
    Owns the engine and session factory for one database URL.

    In-memory SQLite URLs get a single shared connection so that every
    session sees the same data.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        echo: Optional[bool] = None,
    ):
        settings = get_settings().database
        self._url = url or settings.url
        url_obj = make_url(self._url)

        engine_kwargs: dict = {
            "echo": settings.echo if echo is None else echo,
            "pool_pre_ping": True,
        }
        is_sqlite = url_obj.get_backend_name() == "sqlite"
        if is_sqlite and url_obj.database in (None, "", ":memory:"):
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self._engine = create_engine(self._url, **engine_kwargs)
        if is_sqlite:
            _configure_sqlite(self._engine)

        self._session_maker = sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            class_=Session,
        )
        self._write_engine = self._engine.execution_options(**{_WRITE_OPTION: True})

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def url(self) -> str:
        return self._url

    def create_schema(self) -> None:
        """Create any missing tables."""
        Base.metadata.create_all(bind=self._engine)
        logger.info("ledger_schema_ready", backend=self._engine.dialect.name)

    def new_session(self, write: bool = False) -> Session:
        """
        Return a new session; the caller commits and closes it.

        On SQLite a write session takes the database write lock as soon as
        its transaction begins.
        """
        if write:
            return self._session_maker(bind=self._write_engine)
        return self._session_maker()

    @contextmanager
    def session_scope(self, write: bool = False) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""
        session = self.new_session(write=write)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """
        Run a trivial query against the database.

        Raises:
            ConnectionError: If the database cannot be reached
        """
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise ConnectionError(f"Failed to connect to ledger database: {e}") from e
        return True

    def dispose(self) -> None:
        self._engine.dispose()
