# src/tracesmith/synthesis/expressions.py
"""Safe parser for choice-state guard expressions.

Guards are stored as text inside serialized workflows, e.g.
``input['tier'] == 'gold'``, and evaluated against the request payload.
The text is parsed with the ast module and checked against a whitelist
before anything is evaluated. This is NOT eval().

Allowed:
- Field access: input['field'], input.get('field'), input.get('field', default)
- Comparisons: ==, !=, <, >, <=, >=, in, not in, is / is not (None only)
- Boolean operators: and, or, not
- Literals: strings, numbers, booleans, None, and list/tuple/set literals
- Unary minus on numbers

Everything else (calls other than input.get, attribute access, names
other than ``input``, comprehensions, lambdas, arithmetic) is rejected
at parse time.

Booleans are not numbers here: ``True == 1`` is false and ordering a
boolean against a number is an evaluation error. Guards are mined over
canonical JSON values, where the two never match, and evaluation agrees.
"""

from __future__ import annotations

import ast
import operator
from collections.abc import Mapping
from typing import Any

from tracesmith.contracts.errors import TracesmithError

INPUT_NAME = "input"


class ExpressionSecurityError(TracesmithError):
    """Raised when a guard contains forbidden constructs."""


class ExpressionSyntaxError(TracesmithError):
    """Raised when a guard is not valid Python expression syntax."""


class ExpressionEvaluationError(TracesmithError):
    """Raised when a valid guard fails against a payload (missing field, bad types).

    The original exception is chained via __cause__.
    """


_COMPARISON_OPS: dict[type[ast.cmpop], Any] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_UNARY_OPS: dict[type[ast.unaryop], Any] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
}

_ORDERING_OPS = (ast.Lt, ast.LtE, ast.Gt, ast.GtE)


def _bool_number_mix(left: Any, right: Any) -> bool:
    numbers = all(isinstance(v, int | float) for v in (left, right))
    return numbers and isinstance(left, bool) != isinstance(right, bool)


def _is_input_get(node: ast.expr) -> bool:
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and isinstance(node.func.value, ast.Name)
        and node.func.value.id == INPUT_NAME
        and node.func.attr == "get"
    )


class _GuardValidator(ast.NodeVisitor):
    """Collects every forbidden construct instead of stopping at the first."""

    def __init__(self) -> None:
        self.errors: list[str] = []

    def generic_visit(self, node: ast.AST) -> None:
        allowed = (
            ast.Expression,
            ast.Load,
            ast.cmpop,
            ast.boolop,
        )
        if not isinstance(node, allowed):
            self.errors.append(f"Forbidden construct: {type(node).__name__}")
            return
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id != INPUT_NAME:
            self.errors.append(f"Forbidden name: {node.id!r}")

    def visit_Constant(self, node: ast.Constant) -> None:
        if node.value is not None and not isinstance(node.value, str | int | float | bool):
            self.errors.append(f"Forbidden constant type: {type(node.value).__name__}")

    def visit_Subscript(self, node: ast.Subscript) -> None:
        if not (isinstance(node.value, ast.Name) and node.value.id == INPUT_NAME):
            self.errors.append("Subscript access is only allowed directly on input")
        if isinstance(node.slice, ast.Slice):
            self.errors.append("Slice syntax (e.g., [1:3]) is forbidden")
            return
        self.visit(node.slice)

    def visit_Call(self, node: ast.Call) -> None:
        if not _is_input_get(node):
            self.errors.append("Only input.get() may be called")
            return
        if not 1 <= len(node.args) <= 2:
            self.errors.append(f"input.get() requires 1 or 2 arguments, got {len(node.args)}")
        if node.keywords:
            self.errors.append("input.get() does not accept keyword arguments")
        for arg in node.args:
            self.visit(arg)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        # input.get is handled in visit_Call; any attribute reached here is bare
        self.errors.append(f"Forbidden attribute access: {node.attr!r}")

    def visit_Compare(self, node: ast.Compare) -> None:
        operands = [node.left, *node.comparators]
        for i, op in enumerate(node.ops):
            if isinstance(op, ast.Is | ast.IsNot):
                left, right = operands[i], operands[i + 1]
                if not any(isinstance(o, ast.Constant) and o.value is None for o in (left, right)):
                    self.errors.append("'is' and 'is not' are only allowed for None checks")
        for operand in operands:
            self.visit(operand)

    def visit_BoolOp(self, node: ast.BoolOp) -> None:
        for value in node.values:
            self.visit(value)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> None:
        if type(node.op) not in _UNARY_OPS:
            self.errors.append(f"Forbidden unary operator: {type(node.op).__name__}")
        self.visit(node.operand)

    def visit_List(self, node: ast.List) -> None:
        for elt in node.elts:
            self.visit(elt)

    visit_Tuple = visit_List  # type: ignore[assignment]
    visit_Set = visit_List  # type: ignore[assignment]


class _GuardEvaluator(ast.NodeVisitor):
    def __init__(self, payload: Mapping[str, Any]) -> None:
        self._payload = payload

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Name(self, node: ast.Name) -> Any:
        return self._payload

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        key = self.visit(node.slice)
        try:
            return self._payload[key]
        except KeyError as e:
            raise ExpressionEvaluationError(f"Field {key!r} not found. Available fields: {list(self._payload)}") from e
        except TypeError as e:
            raise ExpressionEvaluationError(f"Invalid field key {key!r}: {e}") from e

    def visit_Call(self, node: ast.Call) -> Any:
        args = [self.visit(arg) for arg in node.args]
        try:
            return self._payload.get(*args)
        except TypeError as e:
            raise ExpressionEvaluationError(f"invalid argument to input.get(): {e}") from e

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.visit(comparator)
            if _bool_number_mix(left, right):
                if isinstance(op, _ORDERING_OPS):
                    raise ExpressionEvaluationError(f"cannot order {left!r} against {right!r}")
                if isinstance(op, ast.Eq):
                    return False
                if isinstance(op, ast.NotEq):
                    left = right
                    continue
            try:
                if not _COMPARISON_OPS[type(op)](left, right):
                    return False
            except TypeError as e:
                raise ExpressionEvaluationError(
                    f"cannot compare {type(left).__name__} and {type(right).__name__} with {type(op).__name__}"
                ) from e
            left = right
        return True

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = None
        for value in node.values:
            result = self.visit(value)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        try:
            return _UNARY_OPS[type(node.op)](operand)
        except TypeError as e:
            raise ExpressionEvaluationError(f"cannot apply {type(node.op).__name__} to {type(operand).__name__}") from e

    def visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(elt) for elt in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> tuple[Any, ...]:
        return tuple(self.visit(elt) for elt in node.elts)

    def visit_Set(self, node: ast.Set) -> set[Any]:
        try:
            return {self.visit(elt) for elt in node.elts}
        except TypeError as e:
            raise ExpressionEvaluationError(f"cannot create set literal: {e}") from e


class GuardExpression:
    """A parsed, validated guard.

    Example:
        guard = GuardExpression("input['tier'] == 'gold'")
        guard.evaluate({"tier": "gold"})  # True
    """

    def __init__(self, expression: str) -> None:
        """Parse and validate at construction time.

        Raises:
            ExpressionSyntaxError: Not valid expression syntax
            ExpressionSecurityError: Contains forbidden constructs
        """
        self._expression = expression
        try:
            self._ast = ast.parse(expression, mode="eval")
        except SyntaxError as e:
            raise ExpressionSyntaxError(f"Invalid syntax: {e.msg}") from e

        validator = _GuardValidator()
        validator.visit(self._ast)
        if validator.errors:
            raise ExpressionSecurityError("; ".join(validator.errors))

    @property
    def expression(self) -> str:
        return self._expression

    def evaluate(self, payload: Mapping[str, Any]) -> bool:
        """Evaluate against a request payload; the result is coerced to bool."""
        return bool(_GuardEvaluator(payload).visit(self._ast))

    def __repr__(self) -> str:
        return f"GuardExpression({self._expression!r})"
