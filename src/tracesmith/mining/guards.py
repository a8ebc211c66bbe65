"""Guard inference for branch points.

For each option of a Branch node, pick the request-input predicate that
best separates traces taking that option from all other traces:

    score = P(predicate | option) - P(predicate | rest)

Candidates are ``field == value`` for every scalar value seen in the
option's traces and, for numeric fields, ``field >= min`` and
``field <= max`` over the option's values. This is a deterministic
heuristic; ties break by field name, then operator order, then the
canonical form of the value.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from tracesmith.contracts.enums import GuardOperator
from tracesmith.contracts.patterns import AlignedSequenceSet, BranchNode, GuardCondition, PatternNode
from tracesmith.core.canonical import value_key

_OPERATOR_ORDER = {GuardOperator.EQ: 0, GuardOperator.GE: 1, GuardOperator.LE: 2}


def is_numeric(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, str | int | float | bool)


def holds(request_input: Mapping[str, Any], field_name: str, operator: GuardOperator, value: Any) -> bool:
    """Evaluate one candidate predicate against a request input."""
    if field_name not in request_input:
        return False
    actual = request_input[field_name]
    if operator is GuardOperator.EQ:
        return value_key(actual) == value_key(value)
    if not is_numeric(actual):
        return False
    if operator is GuardOperator.GE:
        return actual >= value
    return actual <= value


@dataclass(frozen=True, slots=True)
class _Candidate:
    field: str
    operator: GuardOperator
    value: Any
    score: float

    def sort_key(self) -> tuple[float, str, int, str]:
        return (-round(self.score, 12), self.field, _OPERATOR_ORDER[self.operator], value_key(self.value))


def _candidates(option_inputs: Sequence[Mapping[str, Any]]) -> list[tuple[str, GuardOperator, Any]]:
    by_field: dict[str, dict[str, Any]] = {}
    for request_input in option_inputs:
        for field_name, value in request_input.items():
            if is_scalar(value):
                by_field.setdefault(field_name, {}).setdefault(value_key(value), value)

    candidates: list[tuple[str, GuardOperator, Any]] = []
    for field_name, values in by_field.items():
        distinct = list(values.values())
        candidates.extend((field_name, GuardOperator.EQ, v) for v in distinct)
        if distinct and all(is_numeric(v) for v in distinct):
            candidates.append((field_name, GuardOperator.GE, min(distinct)))
            candidates.append((field_name, GuardOperator.LE, max(distinct)))
    return candidates


def _share(inputs: Sequence[Mapping[str, Any]], field_name: str, operator: GuardOperator, value: Any) -> float:
    if not inputs:
        return 0.0
    return sum(1 for request_input in inputs if holds(request_input, field_name, operator, value)) / len(inputs)


class GuardMiner:
    """Derives at most one guard per branch option."""

    def mine(self, aligned: AlignedSequenceSet, nodes: Sequence[PatternNode]) -> tuple[GuardCondition, ...]:
        guards: list[GuardCondition] = []
        for node in nodes:
            if isinstance(node, BranchNode):
                guards.extend(self.mine_branch(aligned, node))
        return tuple(guards)

    def mine_branch(self, aligned: AlignedSequenceSet, node: BranchNode) -> list[GuardCondition]:
        column = aligned.column(node.position)
        guards: list[GuardCondition] = []

        for option in node.options:
            option_inputs = [
                trace.request_input
                for trace, task in zip(aligned.traces, column, strict=True)
                if task is not None and task.name == option
            ]
            rest_inputs = [
                trace.request_input
                for trace, task in zip(aligned.traces, column, strict=True)
                if task is None or task.name != option
            ]

            scored = [
                _Candidate(
                    field=field_name,
                    operator=operator,
                    value=value,
                    score=_share(option_inputs, field_name, operator, value)
                    - _share(rest_inputs, field_name, operator, value),
                )
                for field_name, operator, value in _candidates(option_inputs)
            ]
            if not scored:
                continue

            best = min(scored, key=_Candidate.sort_key)
            if best.score <= 0:
                continue
            guards.append(
                GuardCondition(
                    position=node.position,
                    option=option,
                    field=best.field,
                    operator=best.operator,
                    value=best.value,
                    score=best.score,
                )
            )
        return guards
