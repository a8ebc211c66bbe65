"""
Canonical JSON serialization for deterministic hashing and storage.

Two-phase approach:
1. Normalize: Convert numpy scalars, datetimes, and tuples to JSON-safe
   primitives (our code)
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)

NaN and Infinity are REJECTED, not silently converted. A trace value of
NaN would make two otherwise identical patterns hash differently.
"""

from __future__ import annotations

import hashlib
import math
from datetime import UTC, datetime
from typing import Any

import numpy as np
import rfc8785

# Version string stored with every persisted record for hash verification
CANONICAL_VERSION = "sha256-rfc8785-v1"


def _normalize_value(obj: Any) -> Any:
    """Convert a single value to a JSON-safe primitive.

    Raises:
        ValueError: If value is NaN or Infinity
    """
    if isinstance(obj, float | np.floating):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot canonicalize non-finite float: {obj}. Use None for missing values, not NaN.")
        return float(obj)

    if obj is None or isinstance(obj, str | int | bool):
        return obj

    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)

    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return obj.astimezone(UTC).isoformat()

    return obj


def _normalize_for_canonical(data: Any) -> Any:
    """Recursively normalize a data structure for canonical JSON."""
    if isinstance(data, dict):
        return {k: _normalize_for_canonical(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [_normalize_for_canonical(v) for v in data]
    return _normalize_value(data)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON (no whitespace, sorted keys).

    Raises:
        ValueError: If data contains NaN, Infinity, or other non-finite values
        TypeError: If data contains types that cannot be serialized
    """
    normalized = _normalize_for_canonical(obj)
    result: bytes = rfc8785.dumps(normalized)
    return result.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON of obj."""
    canonical = canonical_json(obj)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def value_key(value: Any) -> str:
    """Hashable, order-stable key for an arbitrary trace value.

    Trace values can be dicts or lists (unhashable), so distinctness and
    sorting go through canonical JSON. Values canonical JSON rejects fall
    back to repr, which is stable within one interpreter run.
    """
    try:
        return canonical_json(value)
    except (TypeError, ValueError):
        return repr(value)
