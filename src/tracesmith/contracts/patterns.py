"""Alignment and consensus pattern contracts.

A ConsensusPattern is immutable once produced. Later mining for the
same fingerprint produces a new pattern (new pattern_id) that supersedes
the old one; the old one is never edited.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from tracesmith.contracts.enums import GuardOperator, PatternNodeKind
from tracesmith.contracts.traces import ExecutionTrace, TaskExecution

# Gap marker in aligned sequences.
GAP = None

type AlignedTask = TaskExecution | None


@dataclass(frozen=True, slots=True)
class AlignedSequenceSet:
    """Traces padded with gaps to a common length.

    sequences[i] is the aligned form of traces[i]. traces[0] is the
    alignment reference. pairwise_scores[i] is the score of traces[i + 1]
    against the reference.
    """

    traces: tuple[ExecutionTrace, ...]
    sequences: tuple[tuple[AlignedTask, ...], ...]
    pairwise_scores: tuple[float, ...]
    score: float

    def __post_init__(self) -> None:
        if len(self.traces) != len(self.sequences):
            raise ValueError(f"{len(self.traces)} traces but {len(self.sequences)} aligned sequences")
        lengths = {len(seq) for seq in self.sequences}
        if len(lengths) > 1:
            raise ValueError(f"Aligned sequences must share one length, got {sorted(lengths)}")
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Alignment score must be in [0, 1], got {self.score}")

    @property
    def length(self) -> int:
        return len(self.sequences[0]) if self.sequences else 0

    def column(self, position: int) -> tuple[AlignedTask, ...]:
        """All sequences' entries at one aligned position."""
        return tuple(seq[position] for seq in self.sequences)


@dataclass(frozen=True, slots=True)
class TaskNode:
    """A consensus position where one task dominates."""

    position: int
    name: str
    required: bool
    frequency: float
    input_schema: Mapping[str, str] = field(default_factory=dict)
    output_schema: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "input_schema", MappingProxyType(dict(self.input_schema)))
        object.__setattr__(self, "output_schema", MappingProxyType(dict(self.output_schema)))

    @property
    def kind(self) -> PatternNodeKind:
        return PatternNodeKind.TASK

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "position": self.position,
            "name": self.name,
            "required": self.required,
            "frequency": self.frequency,
            "input_schema": dict(self.input_schema),
            "output_schema": dict(self.output_schema),
        }


@dataclass(frozen=True, slots=True)
class BranchNode:
    """A consensus position with no dominant task.

    options keeps first-seen order; counts[option] is the number of traces
    that ran that option at this position.
    """

    position: int
    options: tuple[str, ...]
    counts: Mapping[str, int]
    trace_count: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", tuple(self.options))
        object.__setattr__(self, "counts", MappingProxyType(dict(self.counts)))
        if set(self.options) != set(self.counts):
            raise ValueError(f"Branch at position {self.position}: options and counts disagree")

    @property
    def kind(self) -> PatternNodeKind:
        return PatternNodeKind.BRANCH

    def frequency(self, option: str) -> float:
        return self.counts[option] / self.trace_count

    @property
    def top_option(self) -> str:
        """Most frequent option; first-seen order breaks ties."""
        return max(self.options, key=lambda o: (self.counts[o], -self.options.index(o)))

    @property
    def top_frequency(self) -> float:
        return self.frequency(self.top_option)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "position": self.position,
            "options": list(self.options),
            "counts": dict(self.counts),
            "trace_count": self.trace_count,
        }


type PatternNode = TaskNode | BranchNode


def pattern_node_from_dict(data: Mapping[str, Any]) -> PatternNode:
    kind = PatternNodeKind(data["kind"])
    if kind is PatternNodeKind.TASK:
        return TaskNode(
            position=data["position"],
            name=data["name"],
            required=data["required"],
            frequency=data["frequency"],
            input_schema=data["input_schema"],
            output_schema=data["output_schema"],
        )
    return BranchNode(
        position=data["position"],
        options=tuple(data["options"]),
        counts=data["counts"],
        trace_count=data["trace_count"],
    )


@dataclass(frozen=True, slots=True)
class VariableRegion:
    """A task input field whose value differed across contributing traces.

    values holds the distinct observed values in first-seen order.
    """

    position: int
    task: str
    field: str
    values: tuple[Any, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"position": self.position, "task": self.task, "field": self.field, "values": list(self.values)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> VariableRegion:
        return cls(position=data["position"], task=data["task"], field=data["field"], values=tuple(data["values"]))


@dataclass(frozen=True, slots=True)
class ConstantInput:
    """A task input field that held one value in every contributing trace."""

    position: int
    task: str
    field: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"position": self.position, "task": self.task, "field": self.field, "value": self.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConstantInput:
        return cls(position=data["position"], task=data["task"], field=data["field"], value=data["value"])


@dataclass(frozen=True, slots=True)
class GuardCondition:
    """Predicate on the request input that selects one branch option.

    score is P(predicate | option) - P(predicate | other traces).
    """

    position: int
    option: str
    field: str
    operator: GuardOperator
    value: Any
    score: float

    @property
    def expression(self) -> str:
        """Render as a guard expression, e.g. ``input['tier'] == 'gold'``."""
        return f"input[{self.field!r}] {self.operator.value} {self.value!r}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position,
            "option": self.option,
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GuardCondition:
        return cls(
            position=data["position"],
            option=data["option"],
            field=data["field"],
            operator=GuardOperator(data["operator"]),
            value=data["value"],
            score=data["score"],
        )


@dataclass(frozen=True, slots=True)
class PerformanceProfile:
    """Expected performance derived from the source traces."""

    avg_duration_ms: float
    p50_duration_ms: float
    p95_duration_ms: float
    success_rate: float
    avg_cost: float

    def to_dict(self) -> dict[str, float]:
        return {
            "avg_duration_ms": self.avg_duration_ms,
            "p50_duration_ms": self.p50_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "success_rate": self.success_rate,
            "avg_cost": self.avg_cost,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PerformanceProfile:
        return cls(
            avg_duration_ms=data["avg_duration_ms"],
            p50_duration_ms=data["p50_duration_ms"],
            p95_duration_ms=data["p95_duration_ms"],
            success_rate=data["success_rate"],
            avg_cost=data["avg_cost"],
        )


@dataclass(frozen=True, slots=True)
class ConsensusPattern:
    """Majority-vote task structure mined from one fingerprint's traces."""

    pattern_id: str
    fingerprint: str
    query: str
    nodes: tuple[PatternNode, ...]
    variable_regions: tuple[VariableRegion, ...]
    guard_conditions: tuple[GuardCondition, ...]
    confidence: float
    trace_count: int
    alignment_score: float
    performance: PerformanceProfile
    constant_inputs: tuple[ConstantInput, ...] = ()
    mined_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        for name in ("confidence", "alignment_score"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"ConsensusPattern.{name} must be in [0, 1], got {value}")
        positions = [node.position for node in self.nodes]
        if positions != sorted(positions) or len(set(positions)) != len(positions):
            raise ValueError(f"ConsensusPattern nodes must be in strictly increasing position order, got {positions}")

    def variable_fields(self, position: int, task: str | None = None) -> frozenset[str]:
        return frozenset(
            r.field for r in self.variable_regions if r.position == position and (task is None or r.task == task)
        )

    def constants_at(self, position: int, task: str) -> dict[str, Any]:
        return {c.field: c.value for c in self.constant_inputs if c.position == position and c.task == task}

    def guards_at(self, position: int) -> tuple[GuardCondition, ...]:
        return tuple(g for g in self.guard_conditions if g.position == position)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern_id": self.pattern_id,
            "fingerprint": self.fingerprint,
            "query": self.query,
            "nodes": [node.to_dict() for node in self.nodes],
            "variable_regions": [r.to_dict() for r in self.variable_regions],
            "guard_conditions": [g.to_dict() for g in self.guard_conditions],
            "confidence": self.confidence,
            "trace_count": self.trace_count,
            "alignment_score": self.alignment_score,
            "performance": self.performance.to_dict(),
            "constant_inputs": [c.to_dict() for c in self.constant_inputs],
            "mined_at": self.mined_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConsensusPattern:
        return cls(
            pattern_id=data["pattern_id"],
            fingerprint=data["fingerprint"],
            query=data["query"],
            nodes=tuple(pattern_node_from_dict(n) for n in data["nodes"]),
            variable_regions=tuple(VariableRegion.from_dict(r) for r in data["variable_regions"]),
            guard_conditions=tuple(GuardCondition.from_dict(g) for g in data["guard_conditions"]),
            confidence=data["confidence"],
            trace_count=data["trace_count"],
            alignment_score=data["alignment_score"],
            performance=PerformanceProfile.from_dict(data["performance"]),
            constant_inputs=tuple(ConstantInput.from_dict(c) for c in data["constant_inputs"]),
            mined_at=datetime.fromisoformat(data["mined_at"]),
        )
