"""Error taxonomy for mining, synthesis, routing, and execution.

Mining errors are control flow for the per-fingerprint pipeline: the
mining service catches them at the fingerprint boundary and turns them
into a MiningOutcome. They never cross into unrelated fingerprints.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tracesmith.contracts.enums import VerificationFailureReason


class TracesmithError(Exception):
    """Base class for all tracesmith errors."""


# =============================================================================
# Mining
# =============================================================================


class InsufficientData(TracesmithError):
    """Fewer traces than min_traces are available.

    NOT an error condition - the fingerprint is skipped silently and
    revisited once more traces arrive.
    """

    def __init__(self, fingerprint: str, available: int, required: int) -> None:
        self.fingerprint = fingerprint
        self.available = available
        self.required = required
        super().__init__(f"{fingerprint}: {available} trace(s) available, {required} required")


class AlignmentBelowThreshold(TracesmithError):
    """Traces are too dissimilar to mine a pattern from."""

    def __init__(self, fingerprint: str, score: float, threshold: float) -> None:
        self.fingerprint = fingerprint
        self.score = score
        self.threshold = threshold
        super().__init__(f"{fingerprint}: alignment score {score:.3f} below threshold {threshold:.3f}")


class LowConfidence(TracesmithError):
    """Mined pattern is not confident enough to synthesize."""

    def __init__(self, fingerprint: str, confidence: float, threshold: float) -> None:
        self.fingerprint = fingerprint
        self.confidence = confidence
        self.threshold = threshold
        super().__init__(f"{fingerprint}: confidence {confidence:.3f} below threshold {threshold:.3f}")


# =============================================================================
# Synthesis
# =============================================================================


class VerificationFailure(TracesmithError):
    """Compiled workflow was rejected by the structural verifier."""

    def __init__(self, reason: VerificationFailureReason, detail: str) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason}: {detail}")


# =============================================================================
# Storage and routing
# =============================================================================


class StorageError(TracesmithError):
    """A store read or write failed.

    Attributes:
        retryable: True for transient failures (connection drops, lock
            contention). The RetryManager only retries retryable errors.
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)


class RouterUpdateRace(TracesmithError):
    """Compare-and-set on routing stats kept losing to concurrent writers."""

    def __init__(self, query_pattern: str, attempts: int) -> None:
        self.query_pattern = query_pattern
        self.attempts = attempts
        super().__init__(f"Routing stats for {query_pattern!r} still conflicting after {attempts} attempt(s)")


class UnknownArm(TracesmithError, KeyError):
    """Arm name is not registered for the query pattern."""

    def __init__(self, query_pattern: str, arm: str) -> None:
        self.query_pattern = query_pattern
        self.arm = arm
        super().__init__(f"Arm {arm!r} is not registered for {query_pattern!r}")


# =============================================================================
# Execution
# =============================================================================


class WorkflowExecutionError(TracesmithError):
    """A synthesized workflow could not produce a result."""


class InputContractViolation(WorkflowExecutionError):
    """Request payload does not satisfy the workflow input contract."""

    def __init__(self, workflow_id: str, problems: list[str]) -> None:
        self.workflow_id = workflow_id
        self.problems = problems
        super().__init__(f"Workflow {workflow_id} input contract violated: {'; '.join(problems)}")


class WorkflowAborted(WorkflowExecutionError):
    """A task state with the fail policy raised."""

    def __init__(self, workflow_id: str, state_id: str, cause: BaseException) -> None:
        self.workflow_id = workflow_id
        self.state_id = state_id
        self.cause = cause
        super().__init__(f"Workflow {workflow_id} aborted at state {state_id!r}: {cause}")


class ArmUnavailable(TracesmithError):
    """The selected arm has nothing to execute for this request."""

    def __init__(self, arm: str, reason: str) -> None:
        self.arm = arm
        self.reason = reason
        super().__init__(f"Arm {arm!r} unavailable: {reason}")
