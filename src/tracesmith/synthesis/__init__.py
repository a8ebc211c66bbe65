"""Workflow synthesis: compile consensus patterns, verify the result."""

from tracesmith.synthesis.compiler import WorkflowCompiler, fed_from_upstream, input_bindings, workflow_name
from tracesmith.synthesis.contracts import ContractInferrer, infer_field_schema, type_name
from tracesmith.synthesis.expressions import (
    ExpressionEvaluationError,
    ExpressionSecurityError,
    ExpressionSyntaxError,
    GuardExpression,
)
from tracesmith.synthesis.graph import WorkflowGraph
from tracesmith.synthesis.verifier import StructuralVerifier

__all__ = [
    "ContractInferrer",
    "ExpressionEvaluationError",
    "ExpressionSecurityError",
    "ExpressionSyntaxError",
    "GuardExpression",
    "StructuralVerifier",
    "WorkflowCompiler",
    "WorkflowGraph",
    "fed_from_upstream",
    "infer_field_schema",
    "input_bindings",
    "type_name",
    "workflow_name",
]
