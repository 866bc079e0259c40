"""Job parameters and job identity.

These types answer: "Which job instance is this launch?"

A job instance is identified by the job name plus its identifying parameters.
Non-identifying parameters travel with the execution (they are stored and
shown) but two launches that differ only in them hit the same instance.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from rebatch.contracts.enums import ParameterType

ParameterValue = str | int | float | datetime

# key(type)=value, with an optional leading "-" marking a non-identifying key
_PARAMETER_PATTERN = re.compile(r"^(?P<flag>-?)(?P<key>[^=()\s]+)(?:\((?P<type>[a-zA-Z]+)\))?=(?P<value>.*)$")

# Parameter keys the engine itself understands
INPUT_DIR = "input.dir"
INPUT_FILE = "input.file"
RUN_ID = "run.id"


def _infer_type(value: ParameterValue) -> ParameterType:
    # bool is an int subclass; reject it explicitly so True never becomes 1
    if isinstance(value, bool):
        raise TypeError("Boolean job parameters are not supported; use a string")
    if isinstance(value, str):
        return ParameterType.STRING
    if isinstance(value, int):
        return ParameterType.LONG
    if isinstance(value, float):
        return ParameterType.DOUBLE
    if isinstance(value, datetime):
        return ParameterType.DATE
    raise TypeError(f"Unsupported job parameter type: {type(value).__name__}")


def _parse_value(text: str, param_type: ParameterType) -> ParameterValue:
    if param_type is ParameterType.STRING:
        return text
    if param_type is ParameterType.LONG:
        return int(text)
    if param_type is ParameterType.DOUBLE:
        return float(text)
    parsed = datetime.fromisoformat(text) if "T" in text or " " in text else datetime.combine(date.fromisoformat(text), datetime.min.time())
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True)
class JobParameter:
    """A single typed job parameter."""

    value: ParameterValue
    type: ParameterType
    identifying: bool = True

    @classmethod
    def of(cls, value: ParameterValue, *, identifying: bool = True) -> JobParameter:
        """Build a parameter, inferring its type from the Python value."""
        return cls(value=value, type=_infer_type(value), identifying=identifying)

    @classmethod
    def from_text(cls, text: str, param_type: ParameterType, *, identifying: bool = True) -> JobParameter:
        """Parse the stored/CLI text form of a parameter."""
        return cls(value=_parse_value(text, param_type), type=param_type, identifying=identifying)

    def as_text(self) -> str:
        """Text form used for storage and display."""
        if isinstance(self.value, datetime):
            return self.value.isoformat()
        return str(self.value)

    def canonical(self) -> dict[str, Any]:
        """Type-tagged JSON-safe form used for identity hashing."""
        return {"type": self.type.value, "value": self.as_text()}


class JobParameters(Mapping[str, JobParameter]):
    """Ordered, immutable mapping of job parameters.

    Example:
        params = JobParameters.of({"input.dir": "/data/in", "run.id": 3})
        params = JobParameters.parse(["input.file=/data/a.csv", "-attempt(long)=2"])
    """

    def __init__(self, parameters: Mapping[str, JobParameter] | None = None) -> None:
        self._parameters: dict[str, JobParameter] = dict(parameters or {})

    @classmethod
    def of(cls, values: Mapping[str, ParameterValue]) -> JobParameters:
        """Build identifying parameters from plain Python values."""
        return cls({key: JobParameter.of(value) for key, value in values.items()})

    @classmethod
    def parse(cls, items: Iterable[str]) -> JobParameters:
        """Parse launcher-style parameter strings.

        Accepted forms: ``key=value`` (string), ``key(type)=value`` with type in
        string/long/double/date, and a leading ``-`` for non-identifying keys.

        Raises:
            ValueError: If an item is malformed or its value does not parse
        """
        parameters: dict[str, JobParameter] = {}
        for item in items:
            match = _PARAMETER_PATTERN.match(item.strip())
            if match is None:
                raise ValueError(f"Malformed job parameter {item!r}; expected key=value or key(type)=value")
            type_name = (match.group("type") or ParameterType.STRING.value).lower()
            try:
                param_type = ParameterType(type_name)
            except ValueError:
                valid = ", ".join(t.value for t in ParameterType)
                raise ValueError(f"Unknown parameter type {type_name!r} in {item!r}. Valid types: {valid}") from None
            parameters[match.group("key")] = JobParameter.from_text(
                match.group("value"),
                param_type,
                identifying=match.group("flag") != "-",
            )
        return cls(parameters)

    def __getitem__(self, key: str) -> JobParameter:
        return self._parameters[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __repr__(self) -> str:
        return f"JobParameters({self.to_text()!r})"

    def get_value(self, key: str, default: ParameterValue | None = None) -> ParameterValue | None:
        """Return the raw value of a parameter, or default when absent."""
        parameter = self._parameters.get(key)
        return parameter.value if parameter is not None else default

    def get_string(self, key: str) -> str | None:
        value = self.get_value(key)
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def with_parameter(self, key: str, parameter: JobParameter) -> JobParameters:
        """Return a copy with one parameter added or replaced."""
        return JobParameters({**self._parameters, key: parameter})

    def identifying(self) -> dict[str, JobParameter]:
        """Identifying parameters, in insertion order."""
        return {key: p for key, p in self._parameters.items() if p.identifying}

    def to_text(self) -> dict[str, str]:
        return {key: p.as_text() for key, p in self._parameters.items()}


@dataclass(frozen=True)
class JobIdentity:
    """Identity of a job instance: job name plus the hash of its identifying parameters.

    Build it with rebatch.core.canonical.job_identity(), which computes
    job_key from the canonical form of the parameters.
    """

    job_name: str
    job_key: str
