"""Tests for the person transform."""

import pytest

from rebatch.contracts.errors import RecordValidationError
from rebatch.contracts.protocols import RecordTransform
from rebatch.contracts.records import RawRecord
from rebatch.plugins.config_base import PluginConfigError
from rebatch.plugins.transforms.person import Person, PersonTransform


def _record(first: str, last: str, age: str) -> RawRecord:
    return RawRecord(line_number=2, raw=f"{first};{last};{age}", fields={"first_name": first, "last_name": last, "age": age})


class TestPersonTransform:
    def test_implements_record_transform(self) -> None:
        assert isinstance(PersonTransform({}), RecordTransform)

    def test_normalizes_names(self) -> None:
        person = PersonTransform({}).apply(_record("jill", "doe", "30"))

        assert person == Person(first_name="Jill", last_name="DOE", age=30)

    def test_capitalize_keeps_rest_of_first_name(self) -> None:
        person = PersonTransform({}).apply(_record("mcDonald", "o'neil", "5"))

        assert person.first_name == "McDonald"
        assert person.last_name == "O'NEIL"

    @pytest.mark.parametrize("age", ["0", "-3"])
    def test_unborn_people_are_rejected(self, age: str) -> None:
        with pytest.raises(RecordValidationError, match="must be born") as exc_info:
            PersonTransform({}).apply(_record("jill", "doe", age))

        assert exc_info.value.field == "age"

    @pytest.mark.parametrize("age", ["abc", ""])
    def test_non_integer_age_is_a_validation_error(self, age: str) -> None:
        with pytest.raises(RecordValidationError, match="Invalid age") as exc_info:
            PersonTransform({}).apply(_record("jill", "doe", age))

        assert exc_info.value.field == "age"

    def test_person_is_frozen(self) -> None:
        person = Person(first_name="a", last_name="b", age=1)

        with pytest.raises(ValueError):
            person.age = 2  # type: ignore[misc]

    def test_takes_no_options(self) -> None:
        with pytest.raises(PluginConfigError):
            PersonTransform({"uppercase": True})
