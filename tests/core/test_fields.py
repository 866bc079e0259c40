"""Tests for the explicit field-order table."""

from pydantic import BaseModel

from rebatch.contracts.records import NOT_AVAILABLE, RawRecord
from rebatch.core.fields import FieldOrder

ORDER = FieldOrder.of_names(["first_name", "last_name", "age"])


class _Person(BaseModel):
    first_name: str
    last_name: str
    age: int


class TestFieldOrder:
    def test_names_keep_declared_order(self) -> None:
        assert ORDER.names == ("first_name", "last_name", "age")

    def test_extract_from_model(self) -> None:
        fields = ORDER.extract(_Person(first_name="Jill", last_name="DOE", age=30))

        assert fields == {"first_name": "Jill", "last_name": "DOE", "age": "30"}

    def test_extract_from_raw_record(self) -> None:
        record = RawRecord(line_number=2, raw="jill;doe;", fields={"first_name": "jill", "last_name": "doe", "age": ""})

        assert ORDER.extract(record) == {"first_name": "jill", "last_name": "doe", "age": NOT_AVAILABLE}

    def test_extract_from_dict_with_missing_keys(self) -> None:
        assert ORDER.extract({"first_name": "a"}) == {"first_name": "a", "last_name": NOT_AVAILABLE, "age": NOT_AVAILABLE}

    def test_from_raw_splits_best_effort(self) -> None:
        assert ORDER.from_raw("jill;doe", ";") == {"first_name": "jill", "last_name": "doe", "age": NOT_AVAILABLE}
        assert ORDER.from_raw(None, ";") == ORDER.not_available()

    def test_custom_accessor(self) -> None:
        order = FieldOrder((("name", lambda p: f"{p.first_name} {p.last_name}"),))

        assert order.extract(_Person(first_name="a", last_name="b", age=1)) == {"name": "a b"}
