# src/tracesmith/core/__init__.py
"""Core infrastructure: canonical JSON, configuration, fingerprints, logging, retry."""

from tracesmith.core.canonical import (
    CANONICAL_VERSION,
    canonical_json,
    stable_hash,
    value_key,
)
from tracesmith.core.config import (
    ConcurrencySettings,
    ConfidenceSettings,
    LoggingSettings,
    MiningSettings,
    RetrySettings,
    RouterSettings,
    SchedulerSettings,
    StoreSettings,
    SynthesisSettings,
    TracesmithSettings,
    load_settings,
)
from tracesmith.core.fingerprint import normalize_query, query_pattern, request_fingerprint
from tracesmith.core.logging import configure_logging, fingerprint_context, get_logger
from tracesmith.core.retry import MaxRetriesExceeded, RetryConfig, RetryManager, is_transient_storage_error

__all__ = [
    "CANONICAL_VERSION",
    "ConcurrencySettings",
    "ConfidenceSettings",
    "LoggingSettings",
    "MaxRetriesExceeded",
    "MiningSettings",
    "RetryConfig",
    "RetryManager",
    "RetrySettings",
    "RouterSettings",
    "SchedulerSettings",
    "StoreSettings",
    "SynthesisSettings",
    "TracesmithSettings",
    "canonical_json",
    "configure_logging",
    "fingerprint_context",
    "get_logger",
    "is_transient_storage_error",
    "load_settings",
    "normalize_query",
    "query_pattern",
    "request_fingerprint",
    "stable_hash",
    "value_key",
]
