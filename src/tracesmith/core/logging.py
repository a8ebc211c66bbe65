# src/tracesmith/core/logging.py
"""Logging setup for tracesmith.

All output goes to stderr through one stdlib handler whose formatter runs
structlog's processor chain. Events logged with structlog and records from
libraries using plain ``logging`` therefore render identically, as JSON
lines or as console text.

Mining runs one fingerprint per worker thread. ``fingerprint_context``
binds the fingerprint into structlog's contextvars for the duration of a
run, so every event a stage emits carries it without threading it through
each call.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Chatty at DEBUG; held at WARNING or above.
_QUIET_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool")


def _drop_formatter_keys(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    # ProcessorFormatter always sets both keys
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _renderers(json_output: bool) -> list[Any]:
    if json_output:
        return [_drop_formatter_keys, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [_drop_formatter_keys, structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route structlog and stdlib logging to stderr at the given level."""
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfigured per CLI invocation and per test
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ProcessorFormatter(processors=_renderers(json_output), foreign_pre_chain=pre_chain))

    numeric_level = logging.getLevelNamesMapping()[level.upper()]
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


@contextmanager
def fingerprint_context(fingerprint: str) -> Iterator[None]:
    """Tag every event logged in this block with the fingerprint."""
    with structlog.contextvars.bound_contextvars(fingerprint=fingerprint):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
