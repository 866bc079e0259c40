"""Database operation helpers to reduce boilerplate in the state store.

Consolidates the repeated `with self._db.connection() as conn:` pattern.
"""

from typing import TYPE_CHECKING, Any

from sqlalchemy import Connection, CursorResult, Executable
from sqlalchemy.engine import Row

from rebatch.contracts.errors import StateIntegrityError

if TYPE_CHECKING:
    from rebatch.core.state.database import StateDB


def require_rows(result: CursorResult[Any], what: str) -> None:
    """Raise if a write statement touched no rows.

    Raises:
        StateIntegrityError: If zero rows are affected
    """
    if result.rowcount == 0:
        raise StateIntegrityError(f"{what}: zero rows affected - target row does not exist")


class DatabaseOps:
    """Helper for common database operations.

    Single-statement reads and writes go through here. Operations that must
    span several statements open their own transaction with db.connection().
    """

    def __init__(self, db: "StateDB") -> None:
        self._db = db

    def execute_fetchone(self, query: Executable) -> Row[Any] | None:
        """Execute query and return single row or None."""
        with self._db.connection() as conn:
            result = conn.execute(query)
            return result.fetchone()

    def execute_fetchall(self, query: Executable) -> list[Row[Any]]:
        """Execute query and return all rows."""
        with self._db.connection() as conn:
            result = conn.execute(query)
            return list(result.fetchall())

    def execute_insert(self, stmt: Executable, *, conn: Connection | None = None) -> None:
        """Execute insert statement.

        Raises:
            StateIntegrityError: If zero rows are affected
        """
        if conn is not None:
            require_rows(conn.execute(stmt), "execute_insert")
            return
        with self._db.connection() as own:
            require_rows(own.execute(stmt), "execute_insert")
