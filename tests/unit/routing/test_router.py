# tests/unit/routing/test_router.py
"""Tests for BanditRouter registration, selection, and updates."""

import threading
from collections import Counter

import pytest

from tracesmith.contracts import BetaPosterior, RouterUpdateRace, RoutingArmStats, StorageError, UnknownArm
from tracesmith.core.config import RouterSettings
from tracesmith.core.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from tracesmith.routing import BanditRouter
from tracesmith.store import MemoryRouterStatsStore, SqlRouterStatsStore, StoreDB

QUERY = "by_region_revenue_show"


class ConstantSampler:
    def __init__(self, value: float = 0.5) -> None:
        self.value = value

    def sample(self, posterior: BetaPosterior) -> float:
        return self.value


class ConflictingStore(MemoryRouterStatsStore):
    """Every compare-and-set loses."""

    def __init__(self) -> None:
        super().__init__()
        self.put_calls = 0

    def put(self, stats: RoutingArmStats, expected_version: int) -> bool:
        self.put_calls += 1
        return False


class FlakyStatsStore(MemoryRouterStatsStore):
    """The first ``failures`` writes raise a transient storage error."""

    def __init__(self, failures: int = 1, *, retryable: bool = True) -> None:
        super().__init__()
        self.failures = failures
        self.retryable = retryable
        self.put_calls = 0

    def put(self, stats: RoutingArmStats, expected_version: int) -> bool:
        self.put_calls += 1
        if self.put_calls <= self.failures:
            raise StorageError("database is locked", retryable=self.retryable)
        return super().put(stats, expected_version)


class TestRegistration:
    def test_defaults_registered_on_first_sight(self, router: BanditRouter) -> None:
        stats = router.stats(QUERY)
        assert stats.arm_names == ("exact", "fallback")
        assert stats.posterior("exact") == BetaPosterior(alpha=1.0, beta=1.0)

    def test_register_arm_keeps_existing_stats(self, router: BanditRouter) -> None:
        router.update(QUERY, "fallback", success=True)
        stats = router.register_arm(QUERY, "synthesized:abc")

        assert stats.arm_names == ("exact", "fallback", "synthesized:abc")
        assert stats.posterior("fallback").alpha == 2.0
        assert stats.posterior("synthesized:abc") == BetaPosterior(alpha=1.0, beta=1.0)

    def test_register_twice_is_a_no_op(self, router: BanditRouter, stats_store: MemoryRouterStatsStore) -> None:
        router.register_arm(QUERY, "synthesized:abc")
        version = stats_store.get(QUERY).version
        router.register_arm(QUERY, "synthesized:abc")
        assert stats_store.get(QUERY).version == version

    def test_custom_prior(self, stats_store: MemoryRouterStatsStore) -> None:
        router = BanditRouter(stats_store, RouterSettings(prior_alpha=2.0, prior_beta=3.0))
        assert router.stats(QUERY).posterior("exact") == BetaPosterior(alpha=2.0, beta=3.0)


class TestSelect:
    def test_tie_goes_to_first_registered(self, stats_store: MemoryRouterStatsStore) -> None:
        router = BanditRouter(stats_store, sampler=ConstantSampler())
        router.register_arm(QUERY, "synthesized:abc")

        assert router.select(QUERY) == "exact"
        assert router.select(QUERY, ["fallback", "synthesized:abc"]) == "fallback"

    def test_unregistered_candidates_are_registered(self, router: BanditRouter) -> None:
        arm = router.select(QUERY, ["synthesized:new"])
        assert arm == "synthesized:new"
        assert router.stats(QUERY).has_arm("synthesized:new")

    def test_empty_candidates(self, router: BanditRouter) -> None:
        with pytest.raises(ValueError, match="No candidate arms"):
            router.select(QUERY, [])

    def test_stronger_arm_dominates(self, stats_store: MemoryRouterStatsStore) -> None:
        stats = RoutingArmStats(
            query_pattern=QUERY,
            arms=(("exact", BetaPosterior(alpha=1.0, beta=10.0)), ("fallback", BetaPosterior(alpha=10.0, beta=1.0))),
            version=1,
        )
        assert stats_store.put(stats, expected_version=0)
        router = BanditRouter(stats_store, RouterSettings(seed=42))

        picks = Counter(router.select(QUERY) for _ in range(1000))

        assert picks["fallback"] > 900

    def test_seeded_routers_agree(self) -> None:
        first = BanditRouter(MemoryRouterStatsStore(), RouterSettings(seed=11))
        second = BanditRouter(MemoryRouterStatsStore(), RouterSettings(seed=11))
        assert [first.select(QUERY) for _ in range(50)] == [second.select(QUERY) for _ in range(50)]


class TestUpdate:
    def test_success_and_failure_increment(self, router: BanditRouter) -> None:
        router.stats(QUERY)
        router.update(QUERY, "exact", success=True)
        stats = router.update(QUERY, "exact", success=False)

        assert stats.posterior("exact") == BetaPosterior(alpha=2.0, beta=2.0)
        assert stats.posterior("fallback") == BetaPosterior(alpha=1.0, beta=1.0)

    def test_version_bumps_per_update(self, router: BanditRouter) -> None:
        before = router.stats(QUERY).version
        assert router.update(QUERY, "fallback", success=True).version == before + 1

    def test_unknown_arm(self, router: BanditRouter) -> None:
        router.stats(QUERY)
        with pytest.raises(UnknownArm):
            router.update(QUERY, "synthesized:missing", success=True)

    def test_persistent_conflict_raises(self) -> None:
        store = ConflictingStore()
        router = BanditRouter(store, RouterSettings(max_update_attempts=3))

        with pytest.raises(RouterUpdateRace) as exc_info:
            router.stats(QUERY)

        assert exc_info.value.attempts == 3
        assert store.put_calls == 3

    def test_conflict_retries_from_fresh_state(self, stats_store: MemoryRouterStatsStore) -> None:
        router = BanditRouter(stats_store)
        router.stats(QUERY)
        # Another writer lands first
        concurrent = stats_store.get(QUERY).with_outcome("exact", success=True)
        original_get = stats_store.get
        calls = {"n": 0}

        def stale_then_fresh(query_pattern: str) -> RoutingArmStats | None:
            calls["n"] += 1
            if calls["n"] == 1:
                current = original_get(query_pattern)
                assert stats_store.put(concurrent, expected_version=current.version)
                return current
            return original_get(query_pattern)

        stats_store.get = stale_then_fresh  # type: ignore[method-assign]

        stats = router.update(QUERY, "exact", success=True)

        assert stats.posterior("exact").alpha == 3.0


class TestTransientStoreFailures:
    def test_failed_write_is_retried_not_dropped(self) -> None:
        store = FlakyStatsStore(failures=0)
        router = BanditRouter(store, retry_manager=RetryManager(RetryConfig.no_wait()))
        router.stats(QUERY)
        router.update(QUERY, "fallback", success=True)
        store.failures = store.put_calls + 1

        stats = router.update(QUERY, "fallback", success=True)

        assert stats.posterior("fallback").alpha == 3.0
        assert store.get(QUERY).posterior("fallback").alpha == 3.0

    def test_persistent_failure_surfaces_after_retries(self) -> None:
        store = FlakyStatsStore(failures=100)
        router = BanditRouter(store, retry_manager=RetryManager(RetryConfig.no_wait(max_attempts=4)))

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            router.stats(QUERY)

        assert exc_info.value.attempts == 4
        assert isinstance(exc_info.value.last_error, StorageError)
        assert store.put_calls == 4

    def test_non_retryable_error_is_not_retried(self) -> None:
        store = FlakyStatsStore(failures=1, retryable=False)
        router = BanditRouter(store, retry_manager=RetryManager(RetryConfig.no_wait()))

        with pytest.raises(StorageError, match="database is locked"):
            router.stats(QUERY)
        assert store.put_calls == 1


class TestConcurrentUpdates:
    THREADS = 8
    UPDATES_PER_THREAD = 200

    def _hammer(self, routers: list[BanditRouter]) -> None:
        routers[0].stats(QUERY)
        barrier = threading.Barrier(self.THREADS)
        errors: list[Exception] = []

        def worker(index: int) -> None:
            router = routers[index % len(routers)]
            barrier.wait()
            try:
                for i in range(self.UPDATES_PER_THREAD):
                    router.update(QUERY, "exact" if (index + i) % 2 else "fallback", success=i % 3 != 0)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(self.THREADS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []

    def _total(self, stats: RoutingArmStats) -> float:
        return sum(p.alpha + p.beta for _, p in stats.arms)

    @pytest.mark.slow
    def test_memory_store_loses_no_increments(self, stats_store: MemoryRouterStatsStore) -> None:
        # Two routers share the store, so compare-and-set conflicts really happen
        routers = [BanditRouter(stats_store, RouterSettings(max_update_attempts=10_000)) for _ in range(2)]

        self._hammer(routers)

        stats = stats_store.get(QUERY)
        assert self._total(stats) == 2 * 2.0 + self.THREADS * self.UPDATES_PER_THREAD
        assert stats.version == 1 + self.THREADS * self.UPDATES_PER_THREAD

    @pytest.mark.slow
    def test_sql_store_loses_no_increments(self, store_db: StoreDB) -> None:
        store = SqlRouterStatsStore(store_db)
        routers = [BanditRouter(store, RouterSettings(max_update_attempts=10_000)) for _ in range(2)]

        self._hammer(routers)

        stats = store.get(QUERY)
        assert self._total(stats) == 2 * 2.0 + self.THREADS * self.UPDATES_PER_THREAD
