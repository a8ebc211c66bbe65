"""Execution trace contracts.

Traces are written once by the ingestion path and are read-only input
to mining. Nothing in tracesmith mutates a trace.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any


def _freeze(mapping: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True, slots=True)
class TaskExecution:
    """One task run inside an execution trace.

    Attributes:
        name: Task name (the alignment alphabet)
        input_schema: field -> type name of the task input
        input_values: field -> observed (sanitized) input value
        output_schema: field -> type name of the task output
        output_summary: Short human-readable description of the output
        output_values: Key output values kept for contracts and guards
        duration_ms: Wall-clock duration of the task
        retries: Number of retries the task needed
    """

    name: str
    input_schema: Mapping[str, str] = field(default_factory=dict)
    input_values: Mapping[str, Any] = field(default_factory=dict)
    output_schema: Mapping[str, str] = field(default_factory=dict)
    output_summary: str = ""
    output_values: Mapping[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0
    retries: int = 0

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("TaskExecution.name must be non-empty")
        if self.retries < 0:
            raise ValueError(f"TaskExecution.retries must be >= 0, got {self.retries}")
        object.__setattr__(self, "input_schema", _freeze(self.input_schema))
        object.__setattr__(self, "input_values", _freeze(self.input_values))
        object.__setattr__(self, "output_schema", _freeze(self.output_schema))
        object.__setattr__(self, "output_values", _freeze(self.output_values))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "input_schema": dict(self.input_schema),
            "input_values": dict(self.input_values),
            "output_schema": dict(self.output_schema),
            "output_summary": self.output_summary,
            "output_values": dict(self.output_values),
            "duration_ms": self.duration_ms,
            "retries": self.retries,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TaskExecution:
        return cls(
            name=data["name"],
            input_schema=data["input_schema"],
            input_values=data["input_values"],
            output_schema=data["output_schema"],
            output_summary=data["output_summary"],
            output_values=data["output_values"],
            duration_ms=data["duration_ms"],
            retries=data["retries"],
        )


@dataclass(frozen=True, slots=True)
class ExecutionTrace:
    """A complete execution of the expensive decision process for one request.

    Attributes:
        trace_id: Unique trace identifier
        fingerprint: Normalized hash of the request (groups similar requests)
        query: Normalized request text
        tasks: Ordered task executions
        success: Whether the execution succeeded
        cost: Total cost of the execution
        timestamp: When the execution finished (timezone-aware)
        total_duration_ms: End-to-end duration
    """

    trace_id: str
    fingerprint: str
    query: str
    tasks: tuple[TaskExecution, ...]
    success: bool
    cost: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    total_duration_ms: float = 0.0

    def __post_init__(self) -> None:
        if self.timestamp.tzinfo is None:
            raise ValueError(f"ExecutionTrace {self.trace_id}: timestamp must be timezone-aware")
        object.__setattr__(self, "tasks", tuple(self.tasks))

    @property
    def task_names(self) -> tuple[str, ...]:
        return tuple(task.name for task in self.tasks)

    @property
    def request_input(self) -> Mapping[str, Any]:
        """Input values of the first task, i.e. what the caller supplied."""
        if not self.tasks:
            return MappingProxyType({})
        return self.tasks[0].input_values

    def to_dict(self) -> dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "fingerprint": self.fingerprint,
            "query": self.query,
            "tasks": [task.to_dict() for task in self.tasks],
            "success": self.success,
            "cost": self.cost,
            "timestamp": self.timestamp.isoformat(),
            "total_duration_ms": self.total_duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExecutionTrace:
        return cls(
            trace_id=data["trace_id"],
            fingerprint=data["fingerprint"],
            query=data["query"],
            tasks=tuple(TaskExecution.from_dict(t) for t in data["tasks"]),
            success=data["success"],
            cost=data["cost"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            total_duration_ms=data["total_duration_ms"],
        )
