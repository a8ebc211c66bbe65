# src/tracesmith/synthesis/compiler.py
"""WorkflowCompiler: ConsensusPattern in, unverified SynthesizedWorkflow out.

Layout mirrors the pattern's positions exactly:

    validation -> <task or choice per position> -> end

State ids:
    task node           task name, or "<name>_<position>" when taken
    branch node         "choice_<position>"
    branch option       "choice_<position>_<option>"

A choice lists one rule per guarded option and defaults to the most
frequent option. Unguarded options other than the default can never be
selected, so no state is emitted for them.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from tracesmith.contracts.enums import BindingSource, ErrorPolicy, StateKind
from tracesmith.contracts.patterns import BranchNode, ConsensusPattern, PatternNode, TaskNode
from tracesmith.contracts.traces import ExecutionTrace
from tracesmith.contracts.workflows import (
    END_STATE_ID,
    VALIDATION_STATE_ID,
    ChoiceRule,
    FieldBinding,
    SynthesizedWorkflow,
    WorkflowState,
)
from tracesmith.core.canonical import value_key
from tracesmith.core.config import SynthesisSettings
from tracesmith.core.fingerprint import query_pattern
from tracesmith.mining.consensus import at_least
from tracesmith.synthesis.contracts import ContractInferrer

slog = structlog.get_logger(__name__)

_MAX_NAME_LENGTH = 64


def workflow_name(query: str) -> str:
    stem = query_pattern(query)[:_MAX_NAME_LENGTH].rstrip("_")
    return f"{stem}_workflow" if stem else "workflow"


def option_state_id(position: int, option: str) -> str:
    return f"choice_{position}_{option}"


def fed_from_upstream(traces: Sequence[ExecutionTrace], task_name: str, fields: frozenset[str]) -> frozenset[str]:
    """Fields of task_name whose input always equals an earlier task's output.

    A field qualifies when every observation of it, across all traces, is
    matched by a same-named output of some task that ran before it in the
    same trace. Fields never observed do not qualify.
    """
    observed: set[str] = set()
    unmatched: set[str] = set()
    for trace in traces:
        produced: dict[str, set[str]] = {}
        for task in trace.tasks:
            if task.name == task_name:
                for name in fields & task.input_values.keys():
                    observed.add(name)
                    if value_key(task.input_values[name]) not in produced.get(name, ()):
                        unmatched.add(name)
            for name, value in task.output_values.items():
                produced.setdefault(name, set()).add(value_key(value))
    return frozenset(observed - unmatched)


def input_bindings(
    schema_fields: Sequence[str],
    variable_fields: frozenset[str],
    constants: Mapping[str, Any],
    upstream_fields: frozenset[str] = frozenset(),
) -> dict[str, FieldBinding]:
    """Bind each task input field to the request, a constant, or the context.

    Variable fields in upstream_fields were produced by an earlier task, so
    they read the context instead of the request.
    """
    fields = list(dict.fromkeys([*schema_fields, *sorted(variable_fields), *constants]))
    bindings: dict[str, FieldBinding] = {}
    for field_name in fields:
        if field_name in variable_fields and field_name in upstream_fields:
            bindings[field_name] = FieldBinding(source=BindingSource.CONTEXT, key=field_name)
        elif field_name in variable_fields:
            bindings[field_name] = FieldBinding(source=BindingSource.INPUT, key=field_name)
        elif field_name in constants:
            bindings[field_name] = FieldBinding(
                source=BindingSource.CONSTANT, key=field_name, value=constants[field_name]
            )
        else:
            bindings[field_name] = FieldBinding(source=BindingSource.CONTEXT, key=field_name)
    return bindings


class WorkflowCompiler:
    """Compiles consensus patterns into state-graph workflows.

    Example:
        compiler = WorkflowCompiler(settings.synthesis)
        workflow = compiler.compile(pattern, traces)
        workflow.states.keys()  # validation, fetch, analyze, decide, end
    """

    def __init__(self, settings: SynthesisSettings | None = None, *, required_threshold: float = 0.9) -> None:
        self._contracts = ContractInferrer(settings)
        self._required_threshold = required_threshold

    def compile(self, pattern: ConsensusPattern, traces: Sequence[ExecutionTrace]) -> SynthesizedWorkflow:
        entry_ids = self._entry_ids(pattern.nodes)
        states: dict[str, WorkflowState] = {}

        states[VALIDATION_STATE_ID] = WorkflowState(
            state_id=VALIDATION_STATE_ID,
            kind=StateKind.VALIDATION,
            goto=entry_ids[0] if entry_ids else END_STATE_ID,
        )

        for index, node in enumerate(pattern.nodes):
            next_id = entry_ids[index + 1] if index + 1 < len(entry_ids) else END_STATE_ID
            if isinstance(node, TaskNode):
                states[entry_ids[index]] = self._task_state(pattern, traces, node, entry_ids[index], next_id)
            else:
                for state in self._choice_states(pattern, traces, node, entry_ids[index], next_id):
                    states[state.state_id] = state

        states[END_STATE_ID] = WorkflowState(state_id=END_STATE_ID, kind=StateKind.END)

        workflow = SynthesizedWorkflow(
            workflow_id=uuid.uuid4().hex,
            fingerprint=pattern.fingerprint,
            pattern_id=pattern.pattern_id,
            name=workflow_name(pattern.query),
            query=pattern.query,
            start_at=VALIDATION_STATE_ID,
            states=states,
            input_contract=self._contracts.input_contract(traces),
            output_contract=self._contracts.output_contract(traces),
            confidence=pattern.confidence,
            performance=pattern.performance,
            trace_count=pattern.trace_count,
        )
        slog.debug(
            "workflow_compiled",
            fingerprint=pattern.fingerprint,
            workflow_id=workflow.workflow_id,
            state_count=len(states),
        )
        return workflow

    @staticmethod
    def _entry_ids(nodes: Sequence[PatternNode]) -> list[str]:
        taken = {VALIDATION_STATE_ID, END_STATE_ID}
        for node in nodes:
            if isinstance(node, BranchNode):
                taken.add(f"choice_{node.position}")
                taken.update(option_state_id(node.position, option) for option in node.options)

        ids: list[str] = []
        for node in nodes:
            if isinstance(node, BranchNode):
                ids.append(f"choice_{node.position}")
                continue
            state_id = node.name if node.name not in taken else f"{node.name}_{node.position}"
            taken.add(state_id)
            ids.append(state_id)
        return ids

    def _task_state(
        self,
        pattern: ConsensusPattern,
        traces: Sequence[ExecutionTrace],
        node: TaskNode,
        state_id: str,
        next_id: str,
    ) -> WorkflowState:
        variable = pattern.variable_fields(node.position, node.name)
        return WorkflowState(
            state_id=state_id,
            kind=StateKind.TASK,
            goto=next_id,
            action=node.name,
            input_mapping=input_bindings(
                list(node.input_schema),
                variable,
                pattern.constants_at(node.position, node.name),
                fed_from_upstream(traces, node.name, variable),
            ),
            error_policy=ErrorPolicy.FAIL if node.required else ErrorPolicy.SKIP,
            required=node.required,
        )

    def _choice_states(
        self,
        pattern: ConsensusPattern,
        traces: Sequence[ExecutionTrace],
        node: BranchNode,
        choice_id: str,
        next_id: str,
    ) -> list[WorkflowState]:
        guards = {guard.option: guard for guard in pattern.guards_at(node.position)}
        default = node.top_option
        emitted = [option for option in node.options if option in guards or option == default]

        states = [
            WorkflowState(
                state_id=choice_id,
                kind=StateKind.CHOICE,
                choices=tuple(
                    ChoiceRule(condition=guards[option].expression, goto=option_state_id(node.position, option))
                    for option in emitted
                    if option in guards
                ),
                default=option_state_id(node.position, default),
            )
        ]
        for option in emitted:
            required = at_least(node.frequency(option), self._required_threshold)
            variable = pattern.variable_fields(node.position, option)
            states.append(
                WorkflowState(
                    state_id=option_state_id(node.position, option),
                    kind=StateKind.TASK,
                    goto=next_id,
                    action=option,
                    input_mapping=input_bindings(
                        [],
                        variable,
                        pattern.constants_at(node.position, option),
                        fed_from_upstream(traces, option, variable),
                    ),
                    error_policy=ErrorPolicy.FAIL if required else ErrorPolicy.SKIP,
                    required=required,
                )
            )
        return states
