"""All status codes, modes, and kinds used across subsystem boundaries.

Values are stored verbatim in the database and in serialized workflows,
so renaming a member is a storage migration.
"""

from enum import StrEnum


class PatternNodeKind(StrEnum):
    """Kind of node in a consensus pattern."""

    TASK = "task"
    BRANCH = "branch"


class StateKind(StrEnum):
    """Kind of state in a synthesized workflow.

    Stored in serialized workflows (states.<id>.kind).
    """

    VALIDATION = "validation"
    TASK = "task"
    CHOICE = "choice"
    END = "end"


class ErrorPolicy(StrEnum):
    """What the workflow executor does when a task state fails.

    Values:
        FAIL: Abort the whole workflow (required consensus nodes)
        SKIP: Ignore the failure and continue with the next state
    """

    FAIL = "fail"
    SKIP = "skip"


class BindingSource(StrEnum):
    """Where a task input field gets its value at execution time."""

    INPUT = "input"
    CONSTANT = "constant"
    CONTEXT = "context"


class GuardOperator(StrEnum):
    """Comparison operator used by a mined branch guard.

    Declaration order is the tie-break order used by the guard miner.
    """

    EQ = "=="
    GE = ">="
    LE = "<="


class VerificationFailureReason(StrEnum):
    """Why the structural verifier rejected a workflow."""

    MISSING_START = "missing_start"
    UNDECLARED_TARGET = "undeclared_target"
    NO_TERMINAL = "no_terminal"
    UNREACHABLE = "unreachable"
    CYCLE_DETECTED = "cycle_detected"
    LOW_CONFIDENCE = "low_confidence"


class MiningStatus(StrEnum):
    """Outcome of one fingerprint's mining cycle.

    Values:
        SKIPPED: Fewer than min_traces successful traces (not an error)
        ALIGNMENT_BELOW_THRESHOLD: Traces too dissimilar; retried next cycle
        LOW_CONFIDENCE: Pattern discarded before synthesis
        VERIFICATION_FAILED: Compiled workflow rejected by the verifier
        NOT_IMPROVED: A deployed workflow with equal or higher confidence exists
        DEPLOYED: Pattern and workflow persisted and router arm registered
        STORAGE_FAILED: Storage kept failing after bounded retry
        FAILED: Unexpected error, isolated to this fingerprint
    """

    SKIPPED = "skipped"
    ALIGNMENT_BELOW_THRESHOLD = "alignment_below_threshold"
    LOW_CONFIDENCE = "low_confidence"
    VERIFICATION_FAILED = "verification_failed"
    NOT_IMPROVED = "not_improved"
    DEPLOYED = "deployed"
    STORAGE_FAILED = "storage_failed"
    FAILED = "failed"


class ArmKind(StrEnum):
    """Family of a routing arm. Arm names are derived from these."""

    EXACT = "exact"
    SYNTHESIZED = "synthesized"
    FALLBACK = "fallback"


class SamplerKind(StrEnum):
    """Beta posterior sampling strategy used by the router."""

    EXACT = "exact"
    GAUSSIAN = "gaussian"
