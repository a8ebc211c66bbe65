# src/tracesmith/routing/router.py
"""BanditRouter: Thompson-sampling arm selection per query pattern.

Each query pattern has one Beta posterior per registered arm. Selection
draws one sample per candidate arm and takes the maximum; ties go to the
arm registered first. Updates add one to alpha (success) or beta
(failure) for the arm that ran.

Concurrency:
    Writers for the same query pattern are serialized in-process by a
    striped lock (a fixed pool indexed by the pattern's hash), and
    across processes by compare-and-set on the stats version in the
    store. A lost compare-and-set re-reads and retries up to
    max_update_attempts, then raises RouterUpdateRace. Updates are pure
    increments, so retrying from fresh state loses nothing and updates
    commute.

Storage:
    Every store read and write goes through the RetryManager, so a
    transient StorageError is retried with backoff instead of dropping
    the increment. MaxRetriesExceeded reaches the caller only once the
    attempts are spent.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from functools import partial
from typing import TypeVar

import structlog

from tracesmith.contracts.errors import RouterUpdateRace
from tracesmith.contracts.routing import BetaPosterior, RoutingArmStats
from tracesmith.contracts.stores import RouterStatsStore
from tracesmith.core.config import RouterSettings
from tracesmith.core.retry import RetryConfig, RetryManager
from tracesmith.routing.sampling import BetaSampler, build_sampler

slog = structlog.get_logger(__name__)

T = TypeVar("T")

LOCK_STRIPES = 64


class BanditRouter:
    """Selects and learns routing arms.

    Example:
        router = BanditRouter(MemoryRouterStatsStore(), RouterSettings(seed=7))
        arm = router.select("by_region_revenue_show", ["exact", "fallback"])
        router.update("by_region_revenue_show", arm, success=True)
    """

    def __init__(
        self,
        store: RouterStatsStore,
        settings: RouterSettings | None = None,
        sampler: BetaSampler | None = None,
        *,
        retry_manager: RetryManager | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or RouterSettings()
        self._sampler = sampler or build_sampler(self._settings)
        self._retry = retry_manager or RetryManager(RetryConfig())
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    @property
    def prior(self) -> BetaPosterior:
        return BetaPosterior(alpha=self._settings.prior_alpha, beta=self._settings.prior_beta)

    def _lock_for(self, query_pattern: str) -> threading.Lock:
        return self._locks[hash(query_pattern) % LOCK_STRIPES]

    def _with_retry(self, operation: Callable[[], T], what: str, query_pattern: str) -> T:
        def on_retry(attempt: int, error: BaseException) -> None:
            slog.warning(
                "router_store_retry", operation=what, query_pattern=query_pattern, attempt=attempt, error=str(error)
            )

        return self._retry.execute_with_retry(operation, on_retry=on_retry)

    def _load(self, query_pattern: str) -> RoutingArmStats | None:
        return self._with_retry(partial(self._store.get, query_pattern), "get", query_pattern)

    def _mutate(
        self,
        query_pattern: str,
        change: Callable[[RoutingArmStats], RoutingArmStats],
    ) -> RoutingArmStats:
        """Apply change with compare-and-set, retrying on conflict."""
        with self._lock_for(query_pattern):
            for attempt in range(1, self._settings.max_update_attempts + 1):
                current = self._load(query_pattern) or RoutingArmStats(query_pattern=query_pattern)
                updated = change(current)
                if updated is current:
                    return current
                put = partial(self._store.put, updated, expected_version=current.version)
                if self._with_retry(put, "put", query_pattern):
                    return updated
                slog.debug(
                    "router_update_conflict",
                    query_pattern=query_pattern,
                    attempt=attempt,
                    expected_version=current.version,
                )
        raise RouterUpdateRace(query_pattern, self._settings.max_update_attempts)

    def _with_defaults(self, stats: RoutingArmStats, extra: Sequence[str] = ()) -> RoutingArmStats:
        for arm in (*self._settings.default_arms, *extra):
            stats = stats.with_arm(arm, self.prior)
        return stats

    def stats(self, query_pattern: str) -> RoutingArmStats:
        """Current stats, registering the default arms on first sight."""
        current = self._load(query_pattern)
        if current is not None and all(current.has_arm(a) for a in self._settings.default_arms):
            return current
        return self._mutate(query_pattern, self._with_defaults)

    def register_arm(self, query_pattern: str, arm: str) -> RoutingArmStats:
        """Add an arm at the prior. Existing arms keep their statistics."""
        stats = self._mutate(query_pattern, lambda s: self._with_defaults(s, (arm,)))
        slog.info("arm_registered", query_pattern=query_pattern, arm=arm, arm_count=len(stats.arms))
        return stats

    def select(self, query_pattern: str, candidates: Sequence[str] | None = None) -> str:
        """Pick the arm with the highest posterior draw.

        Args:
            query_pattern: Normalized routing key
            candidates: Arms eligible for this request (default: all
                registered). Unregistered candidates are registered at
                the prior first.

        Raises:
            ValueError: If candidates is empty
        """
        if candidates is not None and not candidates:
            raise ValueError(f"No candidate arms for {query_pattern!r}")

        stats = self.stats(query_pattern)
        if candidates is not None and not all(stats.has_arm(a) for a in candidates):
            stats = self._mutate(query_pattern, lambda s: self._with_defaults(s, tuple(candidates)))

        eligible = [
            (name, posterior) for name, posterior in stats.arms if candidates is None or name in candidates
        ]
        best_arm = eligible[0][0]
        best_sample = -1.0
        for name, posterior in eligible:
            sample = self._sampler.sample(posterior)
            # Strict comparison: earlier-registered arm keeps ties
            if sample > best_sample:
                best_arm, best_sample = name, sample

        slog.debug("arm_selected", query_pattern=query_pattern, arm=best_arm, sample=best_sample)
        return best_arm

    def update(self, query_pattern: str, arm: str, success: bool) -> RoutingArmStats:
        """Record one resolved execution.

        Raises:
            UnknownArm: If arm is not registered for the query pattern
            RouterUpdateRace: If compare-and-set kept failing
            MaxRetriesExceeded: If the stats store kept failing transiently
        """
        return self._mutate(query_pattern, lambda s: s.with_outcome(arm, success))
