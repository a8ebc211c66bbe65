"""In-process implementations of the store protocols.

Thread-safe; every store guards its dicts with one lock. Used by tests
and by embedders that keep state in memory.
"""

from __future__ import annotations

import threading

from tracesmith.contracts.patterns import ConsensusPattern
from tracesmith.contracts.routing import RoutingArmStats
from tracesmith.contracts.traces import ExecutionTrace
from tracesmith.contracts.workflows import SynthesizedWorkflow


class MemoryTraceStore:
    def __init__(self) -> None:
        self._traces: dict[str, list[ExecutionTrace]] = {}
        self._lock = threading.Lock()

    def add(self, trace: ExecutionTrace) -> None:
        with self._lock:
            self._traces.setdefault(trace.fingerprint, []).append(trace)

    def list_successful_traces(self, fingerprint: str, limit: int) -> list[ExecutionTrace]:
        with self._lock:
            traces = [t for t in self._traces.get(fingerprint, []) if t.success]
        # Stable sort keeps insertion order among equal timestamps
        return sorted(traces, key=lambda t: t.timestamp, reverse=True)[:limit]

    def list_fingerprints(self) -> list[str]:
        with self._lock:
            return sorted(self._traces)


class MemoryPatternStore:
    def __init__(self) -> None:
        self._patterns: dict[str, list[ConsensusPattern]] = {}
        self._lock = threading.Lock()

    def put(self, pattern: ConsensusPattern) -> None:
        with self._lock:
            self._patterns.setdefault(pattern.fingerprint, []).append(pattern)

    def latest(self, fingerprint: str) -> ConsensusPattern | None:
        with self._lock:
            history = self._patterns.get(fingerprint)
            return history[-1] if history else None

    def history(self, fingerprint: str) -> list[ConsensusPattern]:
        with self._lock:
            return list(self._patterns.get(fingerprint, []))


class MemoryWorkflowStore:
    def __init__(self) -> None:
        self._workflows: dict[str, list[SynthesizedWorkflow]] = {}
        self._lock = threading.Lock()

    def put(self, workflow: SynthesizedWorkflow) -> None:
        with self._lock:
            self._workflows.setdefault(workflow.fingerprint, []).append(workflow)

    def get(self, fingerprint: str) -> SynthesizedWorkflow | None:
        with self._lock:
            history = self._workflows.get(fingerprint)
            return history[-1] if history else None

    def history(self, fingerprint: str) -> list[SynthesizedWorkflow]:
        with self._lock:
            return list(self._workflows.get(fingerprint, []))


class MemoryDeploymentStore:
    """Writes a pattern and its workflow to the given stores under one lock."""

    def __init__(self, patterns: MemoryPatternStore, workflows: MemoryWorkflowStore) -> None:
        self._patterns = patterns
        self._workflows = workflows
        self._lock = threading.Lock()

    def deploy(self, pattern: ConsensusPattern, workflow: SynthesizedWorkflow) -> None:
        if workflow.pattern_id != pattern.pattern_id:
            raise ValueError(f"Workflow {workflow.workflow_id} was not compiled from pattern {pattern.pattern_id}")
        with self._lock:
            self._patterns.put(pattern)
            self._workflows.put(workflow)


class MemoryRouterStatsStore:
    def __init__(self) -> None:
        self._stats: dict[str, RoutingArmStats] = {}
        self._lock = threading.Lock()

    def get(self, query_pattern: str) -> RoutingArmStats | None:
        with self._lock:
            return self._stats.get(query_pattern)

    def put(self, stats: RoutingArmStats, expected_version: int) -> bool:
        with self._lock:
            current = self._stats.get(stats.query_pattern)
            current_version = current.version if current is not None else 0
            if current_version != expected_version:
                return False
            self._stats[stats.query_pattern] = stats
            return True
