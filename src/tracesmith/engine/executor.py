# src/tracesmith/engine/executor.py
"""WorkflowExecutor: runs a deployed SynthesizedWorkflow against a payload.

Task states call actions from a registry keyed by task name. Each task's
output is merged into the execution context, so later CONTEXT bindings
can read what earlier tasks produced. The result is the output of the
last task that ran.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from tracesmith.contracts.enums import BindingSource, ErrorPolicy, StateKind
from tracesmith.contracts.errors import InputContractViolation, WorkflowAborted, WorkflowExecutionError
from tracesmith.contracts.stores import TaskAction
from tracesmith.contracts.workflows import InputContract, SynthesizedWorkflow, WorkflowState
from tracesmith.synthesis.contracts import type_name
from tracesmith.synthesis.expressions import ExpressionEvaluationError, GuardExpression

slog = structlog.get_logger(__name__)

# Declared contract types that accept any observed value
_UNCHECKED_TYPES = frozenset({"mixed", "null"})


def type_matches(declared: str, value: Any) -> bool:
    if declared in _UNCHECKED_TYPES:
        return True
    actual = type_name(value)
    if declared == "number":
        return actual in ("number", "integer")
    return actual == declared


def contract_problems(contract: InputContract, payload: Mapping[str, Any]) -> list[str]:
    """Every way payload violates the input contract (empty if none)."""
    problems = [f"missing required field {name!r}" for name in contract.required if name not in payload]
    for name in (*contract.required, *contract.optional):
        if name not in payload or name not in contract.fields:
            continue
        schema = contract.fields[name]
        value = payload[name]
        if value is None:
            if not schema.nullable:
                problems.append(f"field {name!r} is not nullable")
            continue
        if not type_matches(schema.type, value):
            problems.append(f"field {name!r} expected {schema.type}, got {type_name(value)}")
    return problems


class WorkflowExecutor:
    """Interprets synthesized workflows.

    Args:
        actions: Task name -> callable taking resolved inputs and returning
            the task output
        context: Initial values for CONTEXT bindings
    """

    def __init__(self, actions: Mapping[str, TaskAction], context: Mapping[str, Any] | None = None) -> None:
        self._actions = dict(actions)
        self._context = dict(context or {})

    def can_execute(self, workflow: SynthesizedWorkflow) -> bool:
        """True if every task state has a registered action."""
        return all(
            state.action in self._actions for state in workflow.states.values() if state.kind is StateKind.TASK
        )

    def execute(self, workflow: SynthesizedWorkflow, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Run the workflow from start_at to the end state.

        Raises:
            InputContractViolation: Payload fails the validation state
            WorkflowAborted: A task with the fail policy raised
            WorkflowExecutionError: Structural problem found at run time
                (unknown state, step budget exceeded, missing guarantee)
        """
        context = dict(self._context)
        output: dict[str, Any] = {}
        state_id = workflow.start_at

        # Forward-only workflows visit each state at most once
        for _ in range(len(workflow.states)):
            state = workflow.states.get(state_id)
            if state is None:
                raise WorkflowExecutionError(f"Workflow {workflow.workflow_id}: unknown state {state_id!r}")

            if state.kind is StateKind.END:
                self._check_guarantees(workflow, output)
                return output

            if state.kind is StateKind.VALIDATION:
                problems = contract_problems(workflow.input_contract, payload)
                if problems:
                    raise InputContractViolation(workflow.workflow_id, problems)
                assert state.goto is not None
                state_id = state.goto

            elif state.kind is StateKind.CHOICE:
                state_id = self._choose(workflow, state, payload)

            else:
                result = self._run_task(workflow, state, payload, context)
                if result is not None:
                    output = result
                    context.update(result)
                assert state.goto is not None
                state_id = state.goto

        raise WorkflowExecutionError(
            f"Workflow {workflow.workflow_id}: no end state reached within {len(workflow.states)} steps"
        )

    def _run_task(
        self,
        workflow: SynthesizedWorkflow,
        state: WorkflowState,
        payload: Mapping[str, Any],
        context: Mapping[str, Any],
    ) -> dict[str, Any] | None:
        inputs: dict[str, Any] = {}
        for field_name, binding in state.input_mapping.items():
            if binding.source is BindingSource.CONSTANT:
                inputs[field_name] = binding.value
            elif binding.source is BindingSource.INPUT:
                if binding.key in payload:
                    inputs[field_name] = payload[binding.key]
            elif binding.key in context:
                inputs[field_name] = context[binding.key]

        action = self._actions.get(state.action or "")
        try:
            if action is None:
                raise WorkflowExecutionError(f"No action registered for task {state.action!r}")
            return dict(action(inputs))
        except Exception as e:
            if state.error_policy is ErrorPolicy.SKIP:
                slog.warning(
                    "workflow_task_skipped",
                    workflow_id=workflow.workflow_id,
                    state_id=state.state_id,
                    error=str(e),
                )
                return None
            raise WorkflowAborted(workflow.workflow_id, state.state_id, e) from e

    @staticmethod
    def _choose(workflow: SynthesizedWorkflow, state: WorkflowState, payload: Mapping[str, Any]) -> str:
        for rule in state.choices:
            try:
                matched = GuardExpression(rule.condition).evaluate(payload)
            except ExpressionEvaluationError as e:
                # A guard over a field the payload lacks does not match
                slog.debug("guard_not_evaluable", workflow_id=workflow.workflow_id, condition=rule.condition, error=str(e))
                continue
            if matched:
                return rule.goto
        assert state.default is not None
        return state.default

    @staticmethod
    def _check_guarantees(workflow: SynthesizedWorkflow, output: Mapping[str, Any]) -> None:
        missing = [name for name in workflow.output_contract.guarantees if name not in output]
        if missing:
            raise WorkflowExecutionError(f"Workflow {workflow.workflow_id}: output is missing guaranteed fields {missing}")
