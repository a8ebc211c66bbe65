# tests/unit/store/test_stores.py
"""Tests for the memory and SQLAlchemy store implementations.

Both backends must behave identically, so most tests run against each.
"""

from collections.abc import Iterator
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, NamedTuple

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from tests.fixtures.factories import make_pattern, make_trace, make_workflow
from tracesmith.contracts import BetaPosterior, RoutingArmStats, StorageError
from tracesmith.store import (
    MemoryDeploymentStore,
    MemoryPatternStore,
    MemoryRouterStatsStore,
    MemoryTraceStore,
    MemoryWorkflowStore,
    StoreDB,
    sql_stores,
)
from tracesmith.store.sql import storage_errors


class Stores(NamedTuple):
    traces: Any
    patterns: Any
    workflows: Any
    deployments: Any
    stats: Any


@pytest.fixture(params=["memory", "sql"])
def stores(request: pytest.FixtureRequest) -> Iterator[Stores]:
    if request.param == "memory":
        patterns, workflows = MemoryPatternStore(), MemoryWorkflowStore()
        yield Stores(
            MemoryTraceStore(), patterns, workflows, MemoryDeploymentStore(patterns, workflows), MemoryRouterStatsStore()
        )
        return
    db = StoreDB.in_memory()
    yield Stores(*sql_stores(db))
    db.close()


class TestTraceStore:
    def test_successful_traces_newest_first(self, stores: Stores) -> None:
        old = make_trace(["fetch"], age_minutes=30, trace_id="old")
        new = make_trace(["fetch"], age_minutes=1, trace_id="new")
        failed = make_trace(["fetch"], age_minutes=0, success=False, trace_id="failed")
        for trace in (old, failed, new):
            stores.traces.add(trace)

        listed = stores.traces.list_successful_traces(old.fingerprint, limit=10)

        assert [t.trace_id for t in listed] == ["new", "old"]
        assert listed[0] == new

    def test_limit(self, stores: Stores) -> None:
        for age in range(5):
            stores.traces.add(make_trace(["fetch"], age_minutes=age, trace_id=f"t{age}"))
        listed = stores.traces.list_successful_traces(make_trace([]).fingerprint, limit=2)
        assert [t.trace_id for t in listed] == ["t0", "t1"]

    def test_fingerprints(self, stores: Stores) -> None:
        stores.traces.add(make_trace(["a"], fingerprint="ffff"))
        stores.traces.add(make_trace(["a"], fingerprint="aaaa"))
        stores.traces.add(make_trace(["a"], fingerprint="aaaa"))
        assert list(stores.traces.list_fingerprints()) == ["aaaa", "ffff"]

    def test_unknown_fingerprint(self, stores: Stores) -> None:
        assert list(stores.traces.list_successful_traces("nope", limit=5)) == []


class TestPatternAndWorkflowStores:
    def test_latest_pattern(self, stores: Stores) -> None:
        first = make_pattern(pattern_id="p1", mined_at=datetime(2026, 1, 1, tzinfo=UTC))
        second = make_pattern(pattern_id="p2", mined_at=datetime(2026, 1, 2, tzinfo=UTC))
        stores.patterns.put(first)
        stores.patterns.put(second)

        assert stores.patterns.latest(first.fingerprint).pattern_id == "p2"
        assert stores.patterns.latest("missing") is None

    def test_workflow_round_trip(self, stores: Stores) -> None:
        workflow = make_workflow()
        stores.patterns.put(make_pattern())
        stores.workflows.put(workflow)

        loaded = stores.workflows.get(workflow.fingerprint)

        assert loaded == workflow
        assert loaded.verified
        assert stores.workflows.get("missing") is None


class TestDeploymentStore:
    def test_deploy_writes_both(self, stores: Stores) -> None:
        pattern = make_pattern()
        workflow = make_workflow()
        stores.deployments.deploy(pattern, workflow)

        assert stores.patterns.latest(pattern.fingerprint) == pattern
        assert stores.workflows.get(workflow.fingerprint) == workflow

    def test_mismatched_pattern_rejected(self, stores: Stores) -> None:
        with pytest.raises(ValueError, match="not compiled from pattern"):
            stores.deployments.deploy(make_pattern(pattern_id="other"), make_workflow())
        assert stores.patterns.latest(make_pattern().fingerprint) is None


class TestSqlDeploymentAtomicity:
    def test_failed_workflow_insert_rolls_back_pattern(self, store_db: StoreDB) -> None:
        _, patterns, workflows, deployments, _ = sql_stores(store_db)
        workflow = make_workflow()
        deployments.deploy(make_pattern(), workflow)

        # Same workflow_id again violates the primary key
        with pytest.raises(StorageError) as exc_info:
            deployments.deploy(make_pattern(pattern_id="pattern-2"), replace(workflow, pattern_id="pattern-2"))

        assert not exc_info.value.retryable
        assert patterns.latest(workflow.fingerprint).pattern_id == "pattern-1"
        assert workflows.get(workflow.fingerprint).pattern_id == "pattern-1"


class TestRouterStatsStore:
    def _stats(self, version: int, alpha: float = 1.0) -> RoutingArmStats:
        return RoutingArmStats(
            query_pattern="q", arms=(("exact", BetaPosterior(alpha=alpha, beta=1.0)),), version=version
        )

    def test_insert_requires_version_zero(self, stores: Stores) -> None:
        assert stores.stats.get("q") is None
        assert stores.stats.put(self._stats(1), expected_version=0)
        assert stores.stats.get("q").version == 1

    def test_second_insert_conflicts(self, stores: Stores) -> None:
        assert stores.stats.put(self._stats(1), expected_version=0)
        assert not stores.stats.put(self._stats(1, alpha=5.0), expected_version=0)
        assert stores.stats.get("q").posterior("exact").alpha == 1.0

    def test_versioned_update(self, stores: Stores) -> None:
        stores.stats.put(self._stats(1), expected_version=0)

        assert stores.stats.put(self._stats(2, alpha=2.0), expected_version=1)
        assert not stores.stats.put(self._stats(3, alpha=9.0), expected_version=1)

        stored = stores.stats.get("q")
        assert stored.version == 2
        assert stored.posterior("exact").alpha == 2.0

    def test_update_of_missing_row_conflicts(self, stores: Stores) -> None:
        assert not stores.stats.put(self._stats(4), expected_version=3)


class TestStorageErrors:
    def test_operational_errors_are_retryable(self) -> None:
        with pytest.raises(StorageError) as exc_info, storage_errors("read"):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))
        assert exc_info.value.retryable
        assert "read failed" in str(exc_info.value)

    def test_integrity_errors_are_not(self) -> None:
        with pytest.raises(StorageError) as exc_info, storage_errors("write"):
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        assert not exc_info.value.retryable

    def test_other_sqlalchemy_errors_are_not(self) -> None:
        with pytest.raises(StorageError) as exc_info, storage_errors("write"):
            raise SQLAlchemyError("boom")
        assert not exc_info.value.retryable
