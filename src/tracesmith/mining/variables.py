"""Detection of task inputs that vary across traces.

A field with more than one observed value among the traces that ran a
task at a position is variable: the caller supplies it at execution
time. A field with exactly one observed value is a constant baked into
the workflow. Branch options are covered per option, so option states
get bindings too.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from tracesmith.contracts.patterns import (
    AlignedSequenceSet,
    BranchNode,
    ConstantInput,
    PatternNode,
    VariableRegion,
)
from tracesmith.core.canonical import value_key


def observed_values(aligned: AlignedSequenceSet, position: int, task_name: str) -> dict[str, list[Any]]:
    """field -> distinct input values of the traces that ran task_name at position.

    Values keep first-seen order; distinctness goes through canonical JSON
    so dict and list values compare by content.
    """
    seen: dict[str, dict[str, Any]] = {}
    for task in aligned.column(position):
        if task is None or task.name != task_name:
            continue
        for field_name, value in task.input_values.items():
            seen.setdefault(field_name, {}).setdefault(value_key(value), value)
    return {field_name: list(values.values()) for field_name, values in seen.items()}


@dataclass(frozen=True, slots=True)
class InputRegions:
    variables: tuple[VariableRegion, ...]
    constants: tuple[ConstantInput, ...]


class VariableRegionMiner:
    """Splits observed task inputs into variable regions and constants."""

    def mine(self, aligned: AlignedSequenceSet, nodes: Sequence[PatternNode]) -> InputRegions:
        variables: list[VariableRegion] = []
        constants: list[ConstantInput] = []
        for node in nodes:
            names = node.options if isinstance(node, BranchNode) else (node.name,)
            for task_name in names:
                for field_name, values in sorted(observed_values(aligned, node.position, task_name).items()):
                    if len(values) > 1:
                        variables.append(
                            VariableRegion(position=node.position, task=task_name, field=field_name, values=tuple(values))
                        )
                    else:
                        constants.append(
                            ConstantInput(position=node.position, task=task_name, field=field_name, value=values[0])
                        )
        return InputRegions(variables=tuple(variables), constants=tuple(constants))
