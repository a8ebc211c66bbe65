"""Synthesized workflow contracts.

A SynthesizedWorkflow is a small state machine compiled from one
ConsensusPattern. Workflows are superseded, never mutated in place:
attaching a verification result returns a new instance.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from tracesmith.contracts.enums import BindingSource, ErrorPolicy, StateKind, VerificationFailureReason
from tracesmith.contracts.patterns import PerformanceProfile

END_STATE_ID = "end"
VALIDATION_STATE_ID = "validation"


@dataclass(frozen=True, slots=True)
class FieldSchema:
    """Inferred schema for one contract field.

    enum is None when more than the enum limit of distinct values was seen.
    """

    type: str
    examples: tuple[Any, ...] = ()
    nullable: bool = False
    enum: tuple[Any, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "examples": list(self.examples),
            "nullable": self.nullable,
            "enum": list(self.enum) if self.enum is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FieldSchema:
        return cls(
            type=data["type"],
            examples=tuple(data["examples"]),
            nullable=data["nullable"],
            enum=tuple(data["enum"]) if data["enum"] is not None else None,
        )


@dataclass(frozen=True, slots=True)
class InputContract:
    """Fields the caller must (required) or may (optional) supply."""

    required: tuple[str, ...] = ()
    optional: tuple[str, ...] = ()
    fields: Mapping[str, FieldSchema] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        overlap = set(self.required) & set(self.optional)
        if overlap:
            raise ValueError(f"Fields cannot be both required and optional: {sorted(overlap)}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "required": list(self.required),
            "optional": list(self.optional),
            "fields": {name: schema.to_dict() for name, schema in self.fields.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InputContract:
        return cls(
            required=tuple(data["required"]),
            optional=tuple(data["optional"]),
            fields={name: FieldSchema.from_dict(s) for name, s in data["fields"].items()},
        )


@dataclass(frozen=True, slots=True)
class OutputContract:
    """Schema of the final task output and the fields it always carries."""

    fields: Mapping[str, FieldSchema] = field(default_factory=dict)
    guarantees: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields": {name: schema.to_dict() for name, schema in self.fields.items()},
            "guarantees": list(self.guarantees),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> OutputContract:
        return cls(
            fields={name: FieldSchema.from_dict(s) for name, s in data["fields"].items()},
            guarantees=tuple(data["guarantees"]),
        )


@dataclass(frozen=True, slots=True)
class FieldBinding:
    """Where one task input field comes from at execution time.

    INPUT reads payload[key], CONSTANT uses value, CONTEXT reads the
    executor's context mapping.
    """

    source: BindingSource
    key: str
    value: Any = None

    @property
    def template(self) -> str:
        if self.source is BindingSource.CONSTANT:
            return repr(self.value)
        return f"${{{self.source.value}.{self.key}}}"

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source.value, "key": self.key, "value": self.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FieldBinding:
        return cls(source=BindingSource(data["source"]), key=data["key"], value=data["value"])


@dataclass(frozen=True, slots=True)
class ChoiceRule:
    """One guarded transition out of a choice state."""

    condition: str
    goto: str

    def to_dict(self) -> dict[str, str]:
        return {"condition": self.condition, "goto": self.goto}


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """One state of a synthesized workflow.

    Transition shape depends on kind:
    - VALIDATION / TASK: exactly one ``goto``
    - CHOICE: ``choices`` plus a ``default`` target
    - END: no transitions
    """

    state_id: str
    kind: StateKind
    goto: str | None = None
    choices: tuple[ChoiceRule, ...] = ()
    default: str | None = None
    action: str | None = None
    input_mapping: Mapping[str, FieldBinding] = field(default_factory=dict)
    error_policy: ErrorPolicy = ErrorPolicy.FAIL
    required: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "choices", tuple(self.choices))
        object.__setattr__(self, "input_mapping", MappingProxyType(dict(self.input_mapping)))
        if self.kind in (StateKind.VALIDATION, StateKind.TASK):
            if self.goto is None or self.choices or self.default is not None:
                raise ValueError(f"State {self.state_id!r} ({self.kind}) needs exactly one goto and no choices")
        elif self.kind is StateKind.CHOICE:
            if self.goto is not None or self.default is None:
                raise ValueError(f"Choice state {self.state_id!r} needs a default and no goto")
        elif self.goto is not None or self.choices or self.default is not None:
            raise ValueError(f"End state {self.state_id!r} cannot have transitions")
        if self.kind is StateKind.TASK and not self.action:
            raise ValueError(f"Task state {self.state_id!r} needs an action")

    @property
    def targets(self) -> tuple[str, ...]:
        """All outgoing transition targets in declaration order."""
        if self.kind is StateKind.CHOICE:
            assert self.default is not None  # enforced in __post_init__
            return (*(rule.goto for rule in self.choices), self.default)
        if self.goto is not None:
            return (self.goto,)
        return ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "state_id": self.state_id,
            "kind": self.kind.value,
            "goto": self.goto,
            "choices": [rule.to_dict() for rule in self.choices],
            "default": self.default,
            "action": self.action,
            "input_mapping": {name: b.to_dict() for name, b in self.input_mapping.items()},
            "error_policy": self.error_policy.value,
            "required": self.required,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkflowState:
        return cls(
            state_id=data["state_id"],
            kind=StateKind(data["kind"]),
            goto=data["goto"],
            choices=tuple(ChoiceRule(condition=c["condition"], goto=c["goto"]) for c in data["choices"]),
            default=data["default"],
            action=data["action"],
            input_mapping={name: FieldBinding.from_dict(b) for name, b in data["input_mapping"].items()},
            error_policy=ErrorPolicy(data["error_policy"]),
            required=data["required"],
        )


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Outcome of structural verification.

    checks maps each check name to whether it passed; checks after the
    first failure are not run and are absent.
    """

    passed: bool
    reason: VerificationFailureReason | None = None
    detail: str = ""
    checks: Mapping[str, bool] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "checks", MappingProxyType(dict(self.checks)))
        if self.passed and self.reason is not None:
            raise ValueError("A passing verification cannot carry a failure reason")
        if not self.passed and self.reason is None:
            raise ValueError("A failing verification must carry a failure reason")

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "reason": self.reason.value if self.reason is not None else None,
            "detail": self.detail,
            "checks": dict(self.checks),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VerificationResult:
        return cls(
            passed=data["passed"],
            reason=VerificationFailureReason(data["reason"]) if data["reason"] is not None else None,
            detail=data["detail"],
            checks=data["checks"],
        )


@dataclass(frozen=True, slots=True)
class SynthesizedWorkflow:
    """Deterministic workflow compiled from a consensus pattern."""

    workflow_id: str
    fingerprint: str
    pattern_id: str
    name: str
    query: str
    start_at: str
    states: Mapping[str, WorkflowState]
    input_contract: InputContract
    output_contract: OutputContract
    confidence: float
    performance: PerformanceProfile
    trace_count: int
    verification: VerificationResult | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "states", MappingProxyType(dict(self.states)))
        for state_id, state in self.states.items():
            if state_id != state.state_id:
                raise ValueError(f"State key {state_id!r} does not match state_id {state.state_id!r}")

    @property
    def verified(self) -> bool:
        return self.verification is not None and self.verification.passed

    def with_verification(self, result: VerificationResult) -> SynthesizedWorkflow:
        return replace(self, verification=result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "fingerprint": self.fingerprint,
            "pattern_id": self.pattern_id,
            "name": self.name,
            "query": self.query,
            "start_at": self.start_at,
            "states": {sid: state.to_dict() for sid, state in self.states.items()},
            "input_contract": self.input_contract.to_dict(),
            "output_contract": self.output_contract.to_dict(),
            "confidence": self.confidence,
            "performance": self.performance.to_dict(),
            "trace_count": self.trace_count,
            "verification": self.verification.to_dict() if self.verification is not None else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SynthesizedWorkflow:
        verification = data["verification"]
        return cls(
            workflow_id=data["workflow_id"],
            fingerprint=data["fingerprint"],
            pattern_id=data["pattern_id"],
            name=data["name"],
            query=data["query"],
            start_at=data["start_at"],
            states={sid: WorkflowState.from_dict(s) for sid, s in data["states"].items()},
            input_contract=InputContract.from_dict(data["input_contract"]),
            output_contract=OutputContract.from_dict(data["output_contract"]),
            confidence=data["confidence"],
            performance=PerformanceProfile.from_dict(data["performance"]),
            trace_count=data["trace_count"],
            verification=VerificationResult.from_dict(verification) if verification is not None else None,
            created_at=datetime.fromisoformat(data["created_at"]),
        )
