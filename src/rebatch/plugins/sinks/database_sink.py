# src/rebatch/plugins/sinks/database_sink.py
"""Database sink plugin for writing transformed items to a SQL table."""

from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel
from sqlalchemy import Column, Integer, MetaData, Table, Text, create_engine, insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DataError, IntegrityError, OperationalError, SQLAlchemyError

from rebatch.contracts.errors import RecordRejectedError, SinkError
from rebatch.core.logging import get_logger
from rebatch.core.state.database import configure_sqlite, ensure_sqlite_directory, is_sqlite
from rebatch.plugins.config_base import PluginConfig, PluginConfigError

logger = get_logger(__name__)


class DatabaseRecordSinkConfig(PluginConfig):
    """Configuration for the database sink plugin."""

    url: str
    table: str = "people"


def people_table(metadata: MetaData, name: str = "people") -> Table:
    return Table(
        name,
        metadata,
        Column("person_id", Integer, primary_key=True, autoincrement=True),
        Column("first_name", Text, nullable=False),
        Column("last_name", Text, nullable=False),
        Column("age", Integer, nullable=False),
    )


class DatabaseRecordSink:
    """Write chunks of people to a database table, one transaction per chunk.

    Config options:
        url: SQLAlchemy database URL (required)
        table: Table name (default: "people"), created if missing

    The engine and table are created when the plugin is built, before any
    worker thread uses it. One instance is shared by every partition.
    """

    name = "database"
    plugin_version = "1.0.0"

    def __init__(self, config: dict[str, Any]) -> None:
        cfg = DatabaseRecordSinkConfig.from_dict(config)
        self._url = cfg.url
        try:
            ensure_sqlite_directory(cfg.url)
            self._engine: Engine = create_engine(cfg.url)
        except Exception as e:
            raise PluginConfigError(f"Invalid database sink url: {e}") from e
        if is_sqlite(cfg.url):
            configure_sqlite(self._engine)

        self._metadata = MetaData()
        self._table = people_table(self._metadata, cfg.table)
        self._metadata.create_all(self._engine, checkfirst=True)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def table(self) -> Table:
        return self._table

    def write_all(self, items: Sequence[Any]) -> None:
        if not items:
            return
        rows = [self._serialize(item) for item in items]
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(self._table), rows)
        except (IntegrityError, DataError) as e:
            raise RecordRejectedError(f"Database rejected {len(rows)} row(s): {e.orig}") from e
        except OperationalError as e:
            raise SinkError(f"Database unavailable: {e.orig}", retryable=True) from e
        except SQLAlchemyError as e:
            raise SinkError(f"Database write failed: {e}") from e

    def close(self) -> None:
        self._engine.dispose()

    def _serialize(self, item: Any) -> dict[str, Any]:
        if isinstance(item, BaseModel):
            return item.model_dump()
        if isinstance(item, dict):
            return dict(item)
        raise SinkError(f"Cannot write item of type {type(item).__name__}")
