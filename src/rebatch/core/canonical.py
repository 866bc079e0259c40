# src/rebatch/core/canonical.py
"""
Canonical JSON serialization for deterministic job identity.

Two-phase approach:
1. Normalize: Convert job parameters and datetimes to JSON-safe primitives
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)

The job key of a JobInstance is the SHA-256 of this canonical form, so the
same name and identifying parameters always resolve to the same instance
regardless of parameter order or process.

NaN and Infinity are rejected, never converted.
"""

from __future__ import annotations

import hashlib
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import rfc8785

from rebatch.contracts.parameters import JobIdentity, JobParameter, JobParameters


def _normalize_value(obj: Any) -> Any:
    """Convert a single value to a JSON-safe primitive.

    Raises:
        ValueError: If value is NaN or Infinity
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot canonicalize non-finite float: {obj}")
        return obj

    if obj is None or isinstance(obj, str | int | bool):
        return obj

    if isinstance(obj, JobParameter):
        return obj.canonical()

    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return obj.astimezone(UTC).isoformat()

    if isinstance(obj, Decimal):
        if not obj.is_finite():
            raise ValueError(f"Cannot canonicalize non-finite Decimal: {obj}")
        return str(obj)

    return obj


def _normalize_for_canonical(data: Any) -> Any:
    if isinstance(data, Mapping):
        return {str(k): _normalize_for_canonical(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(v) for v in data]
    return _normalize_value(data)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON for hashing.

    Args:
        obj: Data structure to serialize

    Returns:
        Canonical JSON string (no whitespace, sorted keys)

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains types that cannot be serialized
    """
    normalized = _normalize_for_canonical(obj)
    result: bytes = rfc8785.dumps(normalized)
    return result.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON of obj."""
    canonical = canonical_json(obj)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def job_identity(job_name: str, parameters: JobParameters) -> JobIdentity:
    """Compute the identity of a launch.

    Only identifying parameters contribute. Each value is type-tagged, so
    ``run.id=1`` (string) and ``run.id(long)=1`` are different instances.
    """
    return JobIdentity(job_name=job_name, job_key=stable_hash(parameters.identifying()))
