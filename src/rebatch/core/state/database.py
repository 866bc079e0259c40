# src/rebatch/core/state/database.py
"""Engine ownership for the execution state database.

Partition workers commit to the same database from several threads, each
on its own pooled connection. On SQLite that needs WAL and a busy timeout;
other backends get a plain engine. Tables are created when the database is
opened; there are no migrations.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Self

from sqlalchemy import Connection, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.pool import StaticPool

from rebatch.core.state.schema import metadata

IN_MEMORY_URL = "sqlite:///:memory:"
SQLITE_BUSY_TIMEOUT_MS = 5000


def is_sqlite(url: str) -> bool:
    return make_url(url).drivername.startswith("sqlite")


def configure_sqlite(engine: Engine, *, busy_timeout_ms: int = SQLITE_BUSY_TIMEOUT_MS) -> None:
    """Set WAL, foreign keys, and a busy timeout on every new connection."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        cursor.close()


def ensure_sqlite_directory(url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return
    database = parsed.database
    if database and database != ":memory:" and not database.startswith("file:"):
        Path(database).parent.mkdir(parents=True, exist_ok=True)


class StateDB:
    """The execution state database: an engine plus its tables.

    Usage:
        with StateDB.from_url("sqlite:///./state/rebatch.db") as db:
            with db.connection() as conn:
                conn.execute(...)
    """

    def __init__(self, engine: Engine, url: str) -> None:
        self._engine: Engine | None = engine
        self._url = url
        metadata.create_all(engine)

    @classmethod
    def from_url(cls, url: str, *, echo: bool = False) -> Self:
        ensure_sqlite_directory(url)
        engine = create_engine(url, echo=echo)
        if is_sqlite(url):
            configure_sqlite(engine)
        return cls(engine, url)

    @classmethod
    def in_memory(cls) -> Self:
        """A private in-memory database.

        Every checkout shares one connection (StaticPool), so this is only
        safe from a single thread. Partitioned runs need a file database.
        """
        engine = create_engine(
            IN_MEMORY_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        configure_sqlite(engine)
        return cls(engine, IN_MEMORY_URL)

    @property
    def url(self) -> str:
        return self._url

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError(f"State database {self._url} is closed")
        return self._engine

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """One transaction: committed when the block exits, rolled back on error."""
        with self.engine.begin() as conn:
            yield conn

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()
