"""Shared contracts for tracesmith subsystems.

Leaf package: contracts import nothing from mining, synthesis, routing,
engine, or store.
"""

from tracesmith.contracts.enums import (
    ArmKind,
    BindingSource,
    ErrorPolicy,
    GuardOperator,
    MiningStatus,
    PatternNodeKind,
    SamplerKind,
    StateKind,
    VerificationFailureReason,
)
from tracesmith.contracts.errors import (
    AlignmentBelowThreshold,
    ArmUnavailable,
    InputContractViolation,
    InsufficientData,
    LowConfidence,
    RouterUpdateRace,
    StorageError,
    TracesmithError,
    UnknownArm,
    VerificationFailure,
    WorkflowAborted,
    WorkflowExecutionError,
)
from tracesmith.contracts.patterns import (
    GAP,
    AlignedSequenceSet,
    BranchNode,
    ConsensusPattern,
    ConstantInput,
    GuardCondition,
    PatternNode,
    PerformanceProfile,
    TaskNode,
    VariableRegion,
)
from tracesmith.contracts.results import (
    ArmAttempt,
    ArmOutcome,
    CycleReport,
    DispatchResult,
    MiningOutcome,
    MiningTrigger,
    OracleResponse,
)
from tracesmith.contracts.routing import (
    EXACT_ARM,
    FALLBACK_ARM,
    BetaPosterior,
    RoutingArmStats,
    arm_fingerprint,
    arm_kind,
    synthesized_arm,
)
from tracesmith.contracts.stores import (
    DeploymentStore,
    DeterministicHandler,
    FallbackOracle,
    PatternStore,
    RouterStatsStore,
    TaskAction,
    TraceStore,
    WorkflowStore,
)
from tracesmith.contracts.traces import ExecutionTrace, TaskExecution
from tracesmith.contracts.workflows import (
    END_STATE_ID,
    VALIDATION_STATE_ID,
    ChoiceRule,
    FieldBinding,
    FieldSchema,
    InputContract,
    OutputContract,
    SynthesizedWorkflow,
    VerificationResult,
    WorkflowState,
)

__all__ = [
    "END_STATE_ID",
    "EXACT_ARM",
    "FALLBACK_ARM",
    "GAP",
    "VALIDATION_STATE_ID",
    "AlignedSequenceSet",
    "AlignmentBelowThreshold",
    "ArmAttempt",
    "ArmKind",
    "ArmOutcome",
    "ArmUnavailable",
    "BetaPosterior",
    "BindingSource",
    "BranchNode",
    "ChoiceRule",
    "ConsensusPattern",
    "ConstantInput",
    "CycleReport",
    "DeploymentStore",
    "DeterministicHandler",
    "DispatchResult",
    "ErrorPolicy",
    "ExecutionTrace",
    "FallbackOracle",
    "FieldBinding",
    "FieldSchema",
    "GuardCondition",
    "GuardOperator",
    "InputContract",
    "InputContractViolation",
    "InsufficientData",
    "LowConfidence",
    "MiningOutcome",
    "MiningStatus",
    "MiningTrigger",
    "OracleResponse",
    "OutputContract",
    "PatternNode",
    "PatternNodeKind",
    "PatternStore",
    "PerformanceProfile",
    "RouterStatsStore",
    "RouterUpdateRace",
    "RoutingArmStats",
    "SamplerKind",
    "StateKind",
    "StorageError",
    "SynthesizedWorkflow",
    "TaskAction",
    "TaskExecution",
    "TaskNode",
    "TraceStore",
    "TracesmithError",
    "UnknownArm",
    "VariableRegion",
    "VerificationFailure",
    "VerificationFailureReason",
    "VerificationResult",
    "WorkflowAborted",
    "WorkflowExecutionError",
    "WorkflowState",
    "WorkflowStore",
    "arm_fingerprint",
    "arm_kind",
    "synthesized_arm",
]
