"""Explicit field-order table for describing skipped records.

The error file lists the identifying fields of every skipped record in a
fixed order. A FieldOrder is built once per step from (name, accessor)
pairs, so the same table describes a raw input line, a half-parsed record,
or a fully transformed item.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from rebatch.contracts.records import NOT_AVAILABLE, RawRecord

Accessor = Callable[[Any], Any]


def attribute(name: str) -> Accessor:
    """Accessor that reads attribute `name`, falling back to a mapping key."""

    def _get(item: Any) -> Any:
        if isinstance(item, RawRecord):
            return item.fields.get(name)
        if isinstance(item, dict):
            return item.get(name)
        return getattr(item, name, None)

    return _get


@dataclass(frozen=True)
class FieldOrder:
    """Ordered (name, accessor) pairs.

    Example:
        order = FieldOrder.of_names(["first_name", "last_name", "age"])
        order.extract(person)            # {"first_name": "Jill", ...}
        order.from_values(["a", "b"])    # {"first_name": "a", "last_name": "b", "age": "N/A"}
    """

    fields: tuple[tuple[str, Accessor], ...]

    @classmethod
    def of_names(cls, names: Iterable[str]) -> FieldOrder:
        return cls(tuple((name, attribute(name)) for name in names))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.fields)

    def extract(self, item: Any) -> dict[str, str]:
        """Identifying fields of an item, N/A where the accessor finds nothing."""
        result: dict[str, str] = {}
        for name, accessor in self.fields:
            try:
                value = accessor(item)
            except (AttributeError, KeyError, TypeError):
                value = None
            result[name] = NOT_AVAILABLE if value is None or value == "" else str(value)
        return result

    def from_values(self, values: Sequence[str]) -> dict[str, str]:
        """Map positional values onto field names; missing positions become N/A."""
        result: dict[str, str] = {}
        for position, name in enumerate(self.names):
            value = values[position].strip() if position < len(values) else ""
            result[name] = value if value else NOT_AVAILABLE
        return result

    def from_raw(self, raw: str | None, delimiter: str) -> dict[str, str]:
        """Best-effort split of an unparseable input line."""
        if raw is None:
            return self.not_available()
        return self.from_values(raw.split(delimiter))

    def not_available(self) -> dict[str, str]:
        return dict.fromkeys(self.names, NOT_AVAILABLE)
