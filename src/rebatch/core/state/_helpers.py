"""Common helper functions for the state store modules."""

import uuid
from datetime import UTC, datetime


def now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def generate_id() -> str:
    """Generate a unique ID (UUID4 hex)."""
    return uuid.uuid4().hex


def as_utc(value: datetime | None) -> datetime | None:
    """Re-attach UTC to timestamps read back from SQLite (stored without offset)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
