# src/tracesmith/core/retry.py
"""Bounded retry for store operations.

Store reads and writes are the only operations that fail transiently,
whether a mining cycle or the router issues them. A ``StorageError``
flagged ``retryable`` is retried with exponential backoff and jitter;
every other exception propagates on the first failure. When the
attempts run out the caller receives ``MaxRetriesExceeded`` carrying
the last error.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from tracesmith.contracts.errors import StorageError

if TYPE_CHECKING:
    from tracesmith.core.config import RetrySettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """A retryable store operation failed on every attempt."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Store operation failed after {attempts} attempt(s): {last_error}")


def is_transient_storage_error(error: BaseException) -> bool:
    return isinstance(error, StorageError) and error.retryable


@dataclass(frozen=True)
class RetryConfig:
    """Backoff schedule. ``max_attempts`` counts the first try."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    jitter: float = 0.5
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        return cls(max_attempts=1)

    @classmethod
    def no_wait(cls, max_attempts: int = 3) -> "RetryConfig":
        """Immediate retries, for tests."""
        return cls(max_attempts=max_attempts, base_delay=0.0, max_delay=0.0, jitter=0.0)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        # Jitter spans one initial delay
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.initial_delay_seconds,
            exponential_base=settings.exponential_base,
        )


class RetryManager:
    """Runs store operations under a ``RetryConfig``.

    Example:
        manager = RetryManager(RetryConfig.from_settings(settings.retry))
        traces = manager.execute_with_retry(
            lambda: trace_store.list_successful_traces(fingerprint, 10),
            on_retry=lambda attempt, error: slog.warning("store_retry", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _retrying(
        self,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None,
    ) -> Retrying:
        def before_sleep(state: RetryCallState) -> None:
            if on_retry is not None and state.outcome is not None:
                error = state.outcome.exception()
                if error is not None:
                    on_retry(state.attempt_number, error)

        return Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential_jitter(
                initial=self._config.base_delay,
                max=self._config.max_delay,
                exp_base=self._config.exponential_base,
                jitter=self._config.jitter,
            ),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep,
        )

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool] = is_transient_storage_error,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Call ``operation`` until it succeeds or attempts run out.

        ``on_retry(attempt, error)`` fires after each failed attempt that
        will be retried, never after the last one.

        Raises:
            MaxRetriesExceeded: If every attempt failed with a retryable error
            Exception: The first non-retryable error, unchanged
        """
        try:
            return self._retrying(is_retryable, on_retry)(operation)
        except RetryError as e:
            last = e.last_attempt
            error = last.exception()
            assert error is not None
            raise MaxRetriesExceeded(last.attempt_number, error) from error
