"""Input and output contract inference from source traces."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from tracesmith.contracts.traces import ExecutionTrace
from tracesmith.contracts.workflows import FieldSchema, InputContract, OutputContract
from tracesmith.core.config import SynthesisSettings
from tracesmith.core.canonical import value_key
from tracesmith.mining.consensus import at_least


def type_name(value: Any) -> str:
    """JSON-ish type name of a trace value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list | tuple):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def infer_field_schema(
    values: Sequence[Any],
    *,
    max_examples: int = 3,
    max_enum_values: int = 10,
    declared_type: str | None = None,
) -> FieldSchema:
    """Schema from observed values.

    Integers mixed with floats widen to "number"; any other mix is
    "mixed". With no observed values, declared_type (from a trace schema)
    is used.
    """
    distinct: dict[str, Any] = {}
    for value in values:
        distinct.setdefault(value_key(value), value)

    types = {type_name(v) for v in values if v is not None}
    if types == {"integer", "number"}:
        inferred = "number"
    elif len(types) == 1:
        inferred = next(iter(types))
    elif not types:
        inferred = declared_type or "null"
    else:
        inferred = "mixed"

    uniques = list(distinct.values())
    return FieldSchema(
        type=inferred,
        examples=tuple(uniques[:max_examples]),
        nullable=any(v is None for v in values),
        enum=tuple(uniques) if values and len(uniques) <= max_enum_values else None,
    )


class ContractInferrer:
    """Derives workflow input/output contracts from the traces a pattern was mined from."""

    def __init__(self, settings: SynthesisSettings | None = None) -> None:
        self._settings = settings or SynthesisSettings()

    def _schema(self, values: Sequence[Any], declared_type: str | None = None) -> FieldSchema:
        return infer_field_schema(
            values,
            max_examples=self._settings.max_examples,
            max_enum_values=self._settings.max_enum_values,
            declared_type=declared_type,
        )

    def input_contract(self, traces: Sequence[ExecutionTrace]) -> InputContract:
        """Classify first-task input fields by how often they appear."""
        if not traces:
            return InputContract()

        presence: dict[str, list[Any]] = {}
        for trace in traces:
            for field_name, value in trace.request_input.items():
                presence.setdefault(field_name, []).append(value)

        required: list[str] = []
        optional: list[str] = []
        fields: dict[str, FieldSchema] = {}
        for field_name, values in presence.items():
            share = len(values) / len(traces)
            if at_least(share, self._settings.required_field_ratio):
                required.append(field_name)
            elif at_least(share, self._settings.optional_field_ratio):
                optional.append(field_name)
            else:
                continue
            declared = next(
                (t.tasks[0].input_schema[field_name] for t in traces if t.tasks and field_name in t.tasks[0].input_schema),
                None,
            )
            fields[field_name] = self._schema(values, declared)

        return InputContract(required=tuple(required), optional=tuple(optional), fields=fields)

    def output_contract(self, traces: Sequence[ExecutionTrace]) -> OutputContract:
        """Schema of the final task output; guarantees are fields every trace produced."""
        finals = [trace.tasks[-1] for trace in traces if trace.tasks]
        if not finals:
            return OutputContract()

        names: dict[str, None] = {}
        for task in finals:
            names.update(dict.fromkeys(task.output_schema))
            names.update(dict.fromkeys(task.output_values))

        fields: dict[str, FieldSchema] = {}
        guarantees: list[str] = []
        for field_name in names:
            values = [task.output_values[field_name] for task in finals if field_name in task.output_values]
            declared = next((t.output_schema[field_name] for t in finals if field_name in t.output_schema), None)
            fields[field_name] = self._schema(values, declared)
            if len(finals) == len(traces) and all(
                field_name in task.output_schema or field_name in task.output_values for task in finals
            ):
                guarantees.append(field_name)

        return OutputContract(fields=fields, guarantees=tuple(guarantees))
