"""Request normalization, fingerprints, and query patterns.

A fingerprint groups requests for mining; a query pattern groups
requests for routing statistics. Both are order-insensitive over words,
so "Show revenue by region" and "region by revenue, show" coincide.
"""

from __future__ import annotations

import hashlib
import re

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")

FINGERPRINT_LENGTH = 16


def normalize_query(query: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    return " ".join(_NON_ALNUM.sub("", query.lower()).split())


def _sorted_tokens(query: str) -> list[str]:
    return sorted(normalize_query(query).split())


def query_pattern(query: str) -> str:
    """Routing key: sorted normalized tokens joined by underscores."""
    return "_".join(_sorted_tokens(query))


def request_fingerprint(query: str) -> str:
    """Mining key: first 16 hex chars of SHA-256 over the sorted tokens."""
    digest = hashlib.sha256(" ".join(_sorted_tokens(query)).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]
