"""Protocols for external collaborators.

Stores are keyed disjointly by fingerprint (patterns, workflows) or by
query pattern (routing stats), which is what lets mining cycles for
different fingerprints run concurrently.

Implementations:
- tracesmith.store.memory: in-process dict-backed stores
- tracesmith.store.sql: SQLAlchemy Core stores (SQLite / PostgreSQL)
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tracesmith.contracts.patterns import ConsensusPattern
    from tracesmith.contracts.results import ArmOutcome, OracleResponse
    from tracesmith.contracts.routing import RoutingArmStats
    from tracesmith.contracts.traces import ExecutionTrace
    from tracesmith.contracts.workflows import SynthesizedWorkflow


@runtime_checkable
class TraceStore(Protocol):
    """Read side of the trace store. Writes belong to ingestion."""

    def list_successful_traces(self, fingerprint: str, limit: int) -> Sequence[ExecutionTrace]:
        """Return up to ``limit`` successful traces, newest first."""
        ...

    def list_fingerprints(self) -> Sequence[str]:
        """Return every fingerprint that has at least one trace."""
        ...


@runtime_checkable
class PatternStore(Protocol):
    def put(self, pattern: ConsensusPattern) -> None: ...

    def latest(self, fingerprint: str) -> ConsensusPattern | None: ...


@runtime_checkable
class WorkflowStore(Protocol):
    def put(self, workflow: SynthesizedWorkflow) -> None: ...

    def get(self, fingerprint: str) -> SynthesizedWorkflow | None:
        """Return the latest workflow for a fingerprint, or None."""
        ...


@runtime_checkable
class DeploymentStore(Protocol):
    """Atomic write of a pattern and the workflow compiled from it."""

    def deploy(self, pattern: ConsensusPattern, workflow: SynthesizedWorkflow) -> None:
        """Persist both or neither."""
        ...


@runtime_checkable
class RouterStatsStore(Protocol):
    def get(self, query_pattern: str) -> RoutingArmStats | None: ...

    def put(self, stats: RoutingArmStats, expected_version: int) -> bool:
        """Compare-and-set.

        Writes ``stats`` only if the stored version equals
        ``expected_version`` (0 means "no row yet"). Returns False on
        conflict, leaving the stored value untouched.
        """
        ...


@runtime_checkable
class FallbackOracle(Protocol):
    """The expensive, non-deterministic decision process. Opaque."""

    def invoke(self, query: str, payload: Mapping[str, Any]) -> OracleResponse: ...


@runtime_checkable
class DeterministicHandler(Protocol):
    """Exact deterministic matches keyed by fingerprint."""

    def can_handle(self, fingerprint: str) -> bool: ...

    def handle(self, fingerprint: str, payload: Mapping[str, Any]) -> ArmOutcome: ...


# Task actions receive resolved inputs and return the task output.
type TaskAction = Callable[[Mapping[str, Any]], Mapping[str, Any]]
