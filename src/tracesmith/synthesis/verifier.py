# src/tracesmith/synthesis/verifier.py
"""Structural verification of compiled workflows.

Checks run in a fixed order and stop at the first failure:

    start_declared      start_at names a declared state      MISSING_START
    targets_declared    every transition target is declared  UNDECLARED_TARGET
    terminal            exactly one End state, reachable     NO_TERMINAL
    all_reachable       BFS from start covers every state    UNREACHABLE
    acyclic             no cycle among transitions           CYCLE_DETECTED
    confidence          confidence >= threshold              LOW_CONFIDENCE

When the end state is unreachable because every path from start runs
into a loop, the failure is reported as CYCLE_DETECTED rather than
NO_TERMINAL. A failed workflow is never deployed.
"""

from __future__ import annotations

import structlog

from tracesmith.contracts.enums import VerificationFailureReason
from tracesmith.contracts.errors import VerificationFailure
from tracesmith.contracts.workflows import SynthesizedWorkflow, VerificationResult
from tracesmith.mining.consensus import at_least
from tracesmith.synthesis.graph import WorkflowGraph

slog = structlog.get_logger(__name__)


def _render_cycle(edges: list[tuple[str, str]]) -> str:
    return " -> ".join([edges[0][0], *(v for _, v in edges)])


class StructuralVerifier:
    def __init__(self, confidence_threshold: float = 0.75) -> None:
        self._confidence_threshold = confidence_threshold

    def verify(self, workflow: SynthesizedWorkflow) -> VerificationResult:
        graph = WorkflowGraph.from_workflow(workflow)
        checks: dict[str, bool] = {}

        def fail(check: str, reason: VerificationFailureReason, detail: str) -> VerificationResult:
            checks[check] = False
            slog.info(
                "workflow_verification_failed",
                workflow_id=workflow.workflow_id,
                fingerprint=workflow.fingerprint,
                reason=reason.value,
                detail=detail,
            )
            return VerificationResult(passed=False, reason=reason, detail=detail, checks=checks)

        if workflow.start_at not in workflow.states:
            return fail(
                "start_declared",
                VerificationFailureReason.MISSING_START,
                f"start state {workflow.start_at!r} is not declared",
            )
        checks["start_declared"] = True

        undeclared = graph.undeclared_targets()
        if undeclared:
            return fail(
                "targets_declared",
                VerificationFailureReason.UNDECLARED_TARGET,
                f"transitions target undeclared states: {undeclared}",
            )
        checks["targets_declared"] = True

        reachable = graph.reachable_from(workflow.start_at)
        ends = graph.end_states()
        if len(ends) != 1:
            return fail("terminal", VerificationFailureReason.NO_TERMINAL, f"expected exactly one end state, found {ends}")
        if ends[0] not in reachable:
            # Every path from start loops back: report the loop, not the symptom
            trapped = graph.find_cycle(workflow.start_at)
            if trapped is not None:
                return fail("acyclic", VerificationFailureReason.CYCLE_DETECTED, f"cycle: {_render_cycle(trapped)}")
            return fail("terminal", VerificationFailureReason.NO_TERMINAL, f"end state {ends[0]!r} is not reachable")
        checks["terminal"] = True

        unreachable = sorted(graph.declared_states() - reachable)
        if unreachable:
            return fail("all_reachable", VerificationFailureReason.UNREACHABLE, f"unreachable states: {unreachable}")
        checks["all_reachable"] = True

        cycle = graph.find_cycle()
        if cycle is not None:
            return fail("acyclic", VerificationFailureReason.CYCLE_DETECTED, f"cycle: {_render_cycle(cycle)}")
        checks["acyclic"] = True

        if not at_least(workflow.confidence, self._confidence_threshold):
            return fail(
                "confidence",
                VerificationFailureReason.LOW_CONFIDENCE,
                f"confidence {workflow.confidence:.3f} below threshold {self._confidence_threshold:.3f}",
            )
        checks["confidence"] = True

        return VerificationResult(passed=True, checks=checks)

    def check(self, workflow: SynthesizedWorkflow) -> SynthesizedWorkflow:
        """Verify and return the workflow with its result attached.

        Raises:
            VerificationFailure: If any check fails
        """
        result = self.verify(workflow)
        if not result.passed:
            assert result.reason is not None
            raise VerificationFailure(result.reason, result.detail)
        return workflow.with_verification(result)
