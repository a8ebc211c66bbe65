# tests/unit/engine/test_dispatcher.py
"""Tests for RequestDispatcher candidate selection and fall-through."""

from collections.abc import Mapping
from typing import Any

import pytest

from tests.fixtures.factories import DEFAULT_FINGERPRINT, DEFAULT_QUERY, make_pattern, make_workflow
from tracesmith.contracts import (
    ArmOutcome,
    BetaPosterior,
    OracleResponse,
    RoutingArmStats,
    StorageError,
    SynthesizedWorkflow,
)
from tracesmith.core.fingerprint import query_pattern
from tracesmith.core.retry import RetryConfig, RetryManager
from tracesmith.engine import RequestDispatcher, WorkflowExecutor
from tracesmith.routing import BanditRouter
from tracesmith.store import MemoryDeploymentStore, MemoryRouterStatsStore, MemoryWorkflowStore

KEY = query_pattern(DEFAULT_QUERY)
SYNTHESIZED = f"synthesized:{DEFAULT_FINGERPRINT}"
PAYLOAD = {"region": "emea"}


class MeanSampler:
    """Deterministic: every draw is the posterior mean."""

    def sample(self, posterior: BetaPosterior) -> float:
        return posterior.mean


class FakeOracle:
    def __init__(self, response: OracleResponse | None = None) -> None:
        self.response = response or OracleResponse(success=True, output={"answer": 42}, cost=2.5, latency_ms=900.0)
        self.queries: list[str] = []

    def invoke(self, query: str, payload: Mapping[str, Any]) -> OracleResponse:
        self.queries.append(query)
        return self.response


class FakeHandler:
    def __init__(self, fingerprints: set[str], error: Exception | None = None) -> None:
        self.fingerprints = fingerprints
        self.error = error

    def can_handle(self, fingerprint: str) -> bool:
        return fingerprint in self.fingerprints

    def handle(self, fingerprint: str, payload: Mapping[str, Any]) -> ArmOutcome:
        if self.error is not None:
            raise self.error
        return ArmOutcome(success=True, output={"exact": True})


class WithdrawnWorkflowStore(MemoryWorkflowStore):
    """Reports a workflow when listing candidates, then loses it."""

    def __init__(self, workflow: SynthesizedWorkflow) -> None:
        super().__init__()
        self.workflow = workflow
        self.calls = 0

    def get(self, fingerprint: str) -> SynthesizedWorkflow | None:
        self.calls += 1
        return self.workflow if self.calls == 1 else None


class UnreachableWorkflowStore(MemoryWorkflowStore):
    """Every lookup fails with a transient storage error."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    def get(self, fingerprint: str) -> SynthesizedWorkflow | None:
        self.calls += 1
        raise StorageError("connection reset")


class FlakyStatsStore(MemoryRouterStatsStore):
    """Writes fail transiently while ``failing_puts`` is positive."""

    def __init__(self) -> None:
        super().__init__()
        self.failing_puts = 0

    def put(self, stats: RoutingArmStats, expected_version: int) -> bool:
        if self.failing_puts > 0:
            self.failing_puts -= 1
            raise StorageError("database is locked")
        return super().put(stats, expected_version)


class DownStatsStore(MemoryRouterStatsStore):
    def get(self, query_pattern: str) -> RoutingArmStats | None:
        raise StorageError("no such host")


NO_WAIT = RetryManager(RetryConfig.no_wait())


def _working_actions() -> dict[str, Any]:
    return {name: (lambda inputs, name=name: {f"{name}_result": "ok"}) for name in ("fetch", "analyze", "decide")}


@pytest.fixture
def mean_router(stats_store: MemoryRouterStatsStore) -> BanditRouter:
    return BanditRouter(stats_store, sampler=MeanSampler())


def _favor(router: BanditRouter, arm: str) -> None:
    router.register_arm(KEY, arm)
    router.update(KEY, arm, success=True)


def _deploy(deployment_store: MemoryDeploymentStore) -> SynthesizedWorkflow:
    workflow = make_workflow()
    deployment_store.deploy(make_pattern(), workflow)
    return workflow


class TestCandidates:
    def test_fallback_only(self, mean_router: BanditRouter, workflow_store: MemoryWorkflowStore) -> None:
        dispatcher = RequestDispatcher(mean_router, workflow_store, FakeOracle(), WorkflowExecutor({}))
        assert dispatcher.candidates(DEFAULT_FINGERPRINT) == ["fallback"]

    def test_all_arms(
        self,
        mean_router: BanditRouter,
        workflow_store: MemoryWorkflowStore,
        deployment_store: MemoryDeploymentStore,
    ) -> None:
        _deploy(deployment_store)
        dispatcher = RequestDispatcher(
            mean_router, workflow_store, FakeOracle(), WorkflowExecutor({}), FakeHandler({DEFAULT_FINGERPRINT})
        )
        assert dispatcher.candidates(DEFAULT_FINGERPRINT) == ["exact", SYNTHESIZED, "fallback"]


class TestDispatch:
    def test_fallback_serves_unknown_request(self, mean_router: BanditRouter, workflow_store: MemoryWorkflowStore) -> None:
        oracle = FakeOracle()
        dispatcher = RequestDispatcher(mean_router, workflow_store, oracle, WorkflowExecutor({}))

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        assert result.arm == "fallback"
        assert result.success
        assert result.outcome.output == {"answer": 42}
        assert result.total_cost == 2.5
        assert oracle.queries == [DEFAULT_QUERY]
        assert mean_router.stats(KEY).posterior("fallback").alpha == 2.0

    def test_synthesized_workflow_serves(
        self,
        mean_router: BanditRouter,
        workflow_store: MemoryWorkflowStore,
        deployment_store: MemoryDeploymentStore,
    ) -> None:
        _deploy(deployment_store)
        _favor(mean_router, SYNTHESIZED)
        oracle = FakeOracle()
        dispatcher = RequestDispatcher(mean_router, workflow_store, oracle, WorkflowExecutor(_working_actions()))

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        assert result.arm == SYNTHESIZED
        assert result.outcome.output == {"decide_result": "ok"}
        assert len(result.attempts) == 1
        assert oracle.queries == []
        assert mean_router.stats(KEY).posterior(SYNTHESIZED).alpha == 3.0

    def test_failed_workflow_falls_through(
        self,
        mean_router: BanditRouter,
        workflow_store: MemoryWorkflowStore,
        deployment_store: MemoryDeploymentStore,
    ) -> None:
        _deploy(deployment_store)
        _favor(mean_router, SYNTHESIZED)
        dispatcher = RequestDispatcher(mean_router, workflow_store, FakeOracle(), WorkflowExecutor({}))

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        assert [a.arm for a in result.attempts] == [SYNTHESIZED, "fallback"]
        assert not result.attempts[0].outcome.success
        assert "aborted" in (result.attempts[0].outcome.error or "")
        assert result.arm == "fallback"
        assert result.success
        stats = mean_router.stats(KEY)
        assert stats.posterior(SYNTHESIZED) == BetaPosterior(alpha=2.0, beta=2.0)
        assert stats.posterior("fallback").alpha == 2.0

    def test_contract_violation_falls_through(
        self,
        mean_router: BanditRouter,
        workflow_store: MemoryWorkflowStore,
        deployment_store: MemoryDeploymentStore,
    ) -> None:
        _deploy(deployment_store)
        _favor(mean_router, SYNTHESIZED)
        dispatcher = RequestDispatcher(mean_router, workflow_store, FakeOracle(), WorkflowExecutor(_working_actions()))

        result = dispatcher.dispatch(DEFAULT_QUERY, {})

        assert [a.arm for a in result.attempts] == [SYNTHESIZED, "fallback"]
        assert "input contract violated" in (result.attempts[0].outcome.error or "")

    def test_exact_handler_preferred_on_tie(self, mean_router: BanditRouter, workflow_store: MemoryWorkflowStore) -> None:
        dispatcher = RequestDispatcher(
            mean_router, workflow_store, FakeOracle(), WorkflowExecutor({}), FakeHandler({DEFAULT_FINGERPRINT})
        )
        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)
        assert result.arm == "exact"
        assert result.outcome.output == {"exact": True}

    def test_raising_handler_is_an_arm_failure(self, mean_router: BanditRouter, workflow_store: MemoryWorkflowStore) -> None:
        ticks = iter([1.0, 1.25])
        dispatcher = RequestDispatcher(
            mean_router,
            workflow_store,
            FakeOracle(),
            WorkflowExecutor({}),
            FakeHandler({DEFAULT_FINGERPRINT}, error=ConnectionError("handler down")),
            timer=lambda: next(ticks, 2.0),
        )

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        first = result.attempts[0]
        assert first.arm == "exact"
        assert first.outcome.error == "ConnectionError: handler down"
        assert first.outcome.latency_ms == pytest.approx(250.0)
        assert result.arm == "fallback"
        assert mean_router.stats(KEY).posterior("exact").beta == 2.0

    def test_withdrawn_workflow_is_unavailable(self, mean_router: BanditRouter) -> None:
        store = WithdrawnWorkflowStore(make_workflow())
        _favor(mean_router, SYNTHESIZED)
        dispatcher = RequestDispatcher(mean_router, store, FakeOracle(), WorkflowExecutor(_working_actions()))

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        assert "unavailable" in (result.attempts[0].outcome.error or "")
        assert result.arm == "fallback"

    def test_oracle_failure_is_final(self, mean_router: BanditRouter, workflow_store: MemoryWorkflowStore) -> None:
        oracle = FakeOracle(OracleResponse(success=False, output_summary="model refused"))
        dispatcher = RequestDispatcher(mean_router, workflow_store, oracle, WorkflowExecutor({}))

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        assert not result.success
        assert result.outcome.error == "model refused"
        assert mean_router.stats(KEY).posterior("fallback").beta == 2.0


class TestStoreFailures:
    def test_transient_stats_write_failure_keeps_the_increment(self) -> None:
        store = FlakyStatsStore()
        router = BanditRouter(store, sampler=MeanSampler(), retry_manager=NO_WAIT)
        dispatcher = RequestDispatcher(router, MemoryWorkflowStore(), FakeOracle(), WorkflowExecutor({}))
        dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)
        store.failing_puts = 1

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        assert result.arm == "fallback"
        assert store.failing_puts == 0
        assert store.get(KEY).posterior("fallback").alpha == 3.0

    def test_unrecordable_outcome_still_returns_result(self) -> None:
        store = FlakyStatsStore()
        router = BanditRouter(store, sampler=MeanSampler(), retry_manager=NO_WAIT)
        dispatcher = RequestDispatcher(router, MemoryWorkflowStore(), FakeOracle(), WorkflowExecutor({}))
        router.stats(KEY)
        store.failing_puts = 100

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        assert result.success
        assert result.arm == "fallback"
        assert store.get(KEY).posterior("fallback").alpha == 1.0

    def test_workflow_lookup_failure_drops_synthesized_candidate(self, mean_router: BanditRouter) -> None:
        workflows = UnreachableWorkflowStore()
        dispatcher = RequestDispatcher(
            mean_router, workflows, FakeOracle(), WorkflowExecutor({}), retry_manager=NO_WAIT
        )

        assert dispatcher.candidates(DEFAULT_FINGERPRINT) == ["fallback"]
        assert workflows.calls == 3

    def test_workflow_lookup_failure_falls_back_to_oracle(self, mean_router: BanditRouter) -> None:
        oracle = FakeOracle()
        dispatcher = RequestDispatcher(
            mean_router, UnreachableWorkflowStore(), oracle, WorkflowExecutor({}), retry_manager=NO_WAIT
        )

        result = dispatcher.dispatch(DEFAULT_QUERY, {})

        assert result.success
        assert result.arm == "fallback"
        assert oracle.queries == [DEFAULT_QUERY]

    def test_unreachable_stats_store_routes_to_oracle(self, workflow_store: MemoryWorkflowStore) -> None:
        router = BanditRouter(DownStatsStore(), sampler=MeanSampler(), retry_manager=NO_WAIT)
        oracle = FakeOracle()
        dispatcher = RequestDispatcher(router, workflow_store, oracle, WorkflowExecutor({}))

        result = dispatcher.dispatch(DEFAULT_QUERY, PAYLOAD)

        assert result.success
        assert result.arm == "fallback"
        assert [a.arm for a in result.attempts] == ["fallback"]
        assert oracle.queries == [DEFAULT_QUERY]
