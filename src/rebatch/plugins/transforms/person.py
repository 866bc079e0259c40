# src/rebatch/plugins/transforms/person.py
"""Person transform: normalize names and require a positive age."""

from typing import Any

from pydantic import BaseModel, ValidationError

from rebatch.contracts.errors import RecordValidationError
from rebatch.contracts.records import RawRecord
from rebatch.core.logging import get_logger
from rebatch.plugins.config_base import PluginConfig

logger = get_logger(__name__)


class Person(BaseModel):
    """A transformed person, ready for the sink."""

    model_config = {"frozen": True}

    first_name: str
    last_name: str
    age: int


class PersonTransformConfig(PluginConfig):
    """The person transform takes no options."""


def _capitalize(value: str) -> str:
    # Only the first character changes, unlike str.capitalize()
    return value[:1].upper() + value[1:]


class PersonTransform:
    """Capitalize first names, upper-case last names, reject the unborn.

    Raises RecordValidationError for a non-integer age or an age <= 0.
    """

    name = "person"
    plugin_version = "1.0.0"

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        PersonTransformConfig.from_dict(config if config is not None else {})

    def apply(self, record: RawRecord) -> Person:
        try:
            person = Person.model_validate(record.fields)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or None
            raise RecordValidationError(f"Invalid {field}: {error['msg']}", field=field) from e

        if person.age <= 0:
            raise RecordValidationError("must be born", field="age")

        transformed = Person(
            first_name=_capitalize(person.first_name),
            last_name=person.last_name.upper(),
            age=person.age,
        )
        logger.debug("Converted person", line=record.line_number, before=record.raw, after=transformed.model_dump())
        return transformed
