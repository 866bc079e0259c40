"""Tests for canonical JSON and job identity."""

import math
from datetime import UTC, datetime, timedelta, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from rebatch.contracts.parameters import JobParameter, JobParameters
from rebatch.core.canonical import canonical_json, job_identity, stable_hash

keys = st.text(alphabet="abcdefghij.", min_size=1, max_size=8)
values = st.one_of(st.text(max_size=10), st.integers(min_value=-(10**6), max_value=10**6))


class TestCanonicalJson:
    def test_sorted_and_compact(self) -> None:
        assert canonical_json({"b": 1, "a": [1, "x"]}) == '{"a":[1,"x"],"b":1}'

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_rejects_non_finite_floats(self, value: float) -> None:
        with pytest.raises(ValueError, match="non-finite"):
            canonical_json({"x": value})

    def test_datetimes_normalize_to_utc(self) -> None:
        local = datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(hours=2)))
        utc = datetime(2024, 1, 1, 10, tzinfo=UTC)

        assert canonical_json({"t": local}) == canonical_json({"t": utc})

    def test_stable_hash_is_sha256_hex(self) -> None:
        digest = stable_hash({"a": 1})

        assert len(digest) == 64
        assert digest == stable_hash({"a": 1})


class TestJobIdentity:
    """Same name + identifying parameters always resolve to the same key."""

    def test_order_does_not_matter(self) -> None:
        first = JobParameters.of({"input.dir": "/in", "run.id": 1})
        second = JobParameters.of({"run.id": 1, "input.dir": "/in"})

        assert job_identity("importUserJob", first) == job_identity("importUserJob", second)

    def test_non_identifying_parameters_are_ignored(self) -> None:
        base = JobParameters.of({"input.dir": "/in"})
        noted = base.with_parameter("note", JobParameter.of("hello", identifying=False))

        assert job_identity("job", base).job_key == job_identity("job", noted).job_key

    def test_type_is_part_of_identity(self) -> None:
        as_long = JobParameters.of({"run.id": 1})
        as_string = JobParameters.of({"run.id": "1"})

        assert job_identity("job", as_long).job_key != job_identity("job", as_string).job_key

    def test_job_name_is_part_of_identity(self) -> None:
        params = JobParameters.of({"input.dir": "/in"})

        assert job_identity("a", params) != job_identity("b", params)

    @given(st.dictionaries(keys, values, max_size=6))
    def test_identity_is_deterministic(self, raw: dict) -> None:
        forward = JobParameters.of(raw)
        backward = JobParameters.of(dict(reversed(list(raw.items()))))

        assert job_identity("job", forward) == job_identity("job", backward)
