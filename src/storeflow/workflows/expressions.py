"""
Restricted expression language used by condition nodes and custom primitives.

Supports a constrained Python expression subset evaluated by walking the AST.
There is no access to builtins, attributes of arbitrary objects, private
names, comprehensions or lambdas. Mapping keys can be read with dotted access
(``input.x``) or subscripts (``input["x"]``).
"""

from __future__ import annotations

import ast
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping

from storeflow.errors import ExpressionError


def _empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple, dict)) and not value)


def _lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _upper(value: Any) -> Any:
    return value.upper() if isinstance(value, str) else value


def _trim(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


SAFE_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "sum": sum,
    "round": round,
    "sorted": sorted,
    "list": list,
    "empty": _empty,
    "lower": _lower,
    "upper": _upper,
    "trim": _trim,
    "now": lambda: datetime.now(timezone.utc).isoformat(),
    "uuid": lambda: str(uuid.uuid4()),
}

_LITERAL_NAMES = {
    "True": True,
    "False": False,
    "None": None,
    "true": True,
    "false": False,
    "null": None,
}

_BIN_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
    ast.FloorDiv: lambda a, b: a // b,
    ast.Mod: lambda a, b: a % b,
}

_COMPARE_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: lambda a, b: a == b,
    ast.NotEq: lambda a, b: a != b,
    ast.Lt: lambda a, b: a < b,
    ast.LtE: lambda a, b: a <= b,
    ast.Gt: lambda a, b: a > b,
    ast.GtE: lambda a, b: a >= b,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: lambda a, b: a is b,
    ast.IsNot: lambda a, b: a is not b,
}

# Longest sequence a repetition may produce
MAX_SEQUENCE_REPEAT = 10_000

_SEQUENCE_TYPES = (str, list, tuple)


def _check_repeat(left: Any, right: Any) -> None:
    """Reject ``seq * n`` whose result would exceed MAX_SEQUENCE_REPEAT items."""
    if isinstance(left, _SEQUENCE_TYPES) and isinstance(right, int):
        sequence, count = left, right
    elif isinstance(right, _SEQUENCE_TYPES) and isinstance(left, int):
        sequence, count = right, left
    else:
        return
    if count > 0 and len(sequence) * count > MAX_SEQUENCE_REPEAT:
        raise ExpressionError("Sequence repetition too large")


class _SafeEvaluator:
    def __init__(self, context: Mapping[str, Any]):
        self.context = context

    def eval(self, tree: ast.Expression) -> Any:
        return self._eval_node(tree.body)

    def _eval_node(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id in _LITERAL_NAMES:
                return _LITERAL_NAMES[node.id]
            return self.context.get(node.id)

        if isinstance(node, ast.Attribute):
            value = self._eval_node(node.value)
            if isinstance(value, Mapping):
                return value.get(node.attr)
            if value is None:
                return None
            raise ExpressionError(
                f"Cannot read '{node.attr}' from {type(value).__name__}"
            )

        if isinstance(node, ast.Subscript):
            value = self._eval_node(node.value)
            index = self._eval_node(node.slice)
            if isinstance(value, (list, tuple, str)) and isinstance(index, int):
                if -len(value) <= index < len(value):
                    return value[index]
                return None
            if isinstance(value, Mapping):
                return value.get(index)
            return None

        if isinstance(node, ast.List):
            return [self._eval_node(item) for item in node.elts]

        if isinstance(node, ast.Tuple):
            return tuple(self._eval_node(item) for item in node.elts)

        if isinstance(node, ast.Dict):
            return {
                self._eval_node(key): self._eval_node(value)
                for key, value in zip(node.keys, node.values)
            }

        if isinstance(node, ast.BoolOp):
            # Short-circuit like Python, but always return a bool
            if isinstance(node.op, ast.And):
                return all(bool(self._eval_node(value)) for value in node.values)
            return any(bool(self._eval_node(value)) for value in node.values)

        if isinstance(node, ast.UnaryOp):
            operand = self._eval_node(node.operand)
            if isinstance(node.op, ast.Not):
                return not bool(operand)
            if isinstance(node.op, ast.USub):
                return -operand
            if isinstance(node.op, ast.UAdd):
                return +operand
            raise ExpressionError("Unsupported unary operator")

        if isinstance(node, ast.BinOp):
            left = self._eval_node(node.left)
            right = self._eval_node(node.right)
            op = _BIN_OPS.get(type(node.op))
            if op is None:
                raise ExpressionError(f"Unsupported operator: {type(node.op).__name__}")
            if isinstance(node.op, ast.Mult):
                _check_repeat(left, right)
            return op(left, right)

        if isinstance(node, ast.Compare):
            left = self._eval_node(node.left)
            for op_node, comparator in zip(node.ops, node.comparators):
                right = self._eval_node(comparator)
                if not _COMPARE_OPS[type(op_node)](left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            test = bool(self._eval_node(node.test))
            return self._eval_node(node.body if test else node.orelse)

        if isinstance(node, ast.Call):
            fn = SAFE_FUNCTIONS[node.func.id]  # type: ignore[attr-defined]
            args = [self._eval_node(arg) for arg in node.args]
            kwargs = {kw.arg: self._eval_node(kw.value) for kw in node.keywords if kw.arg}
            return fn(*args, **kwargs)

        raise ExpressionError(f"Unsupported expression node: {type(node).__name__}")


_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Attribute,
    ast.Subscript,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.keyword,
    *_BIN_OPS.keys(),
    *_COMPARE_OPS.keys(),
)


def compile_expression(expression: str) -> ast.Expression:
    """
    Parse and vet an expression without evaluating it.

    Raises:
        ExpressionError: If the expression is empty, has a syntax error or
            uses a construct outside the restricted language.
    """
    expr = str(expression or "").strip()
    if not expr:
        raise ExpressionError("Expression is empty")
    try:
        tree = ast.parse(expr, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression syntax: {e.msg}") from e

    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise ExpressionError(f"Unsupported expression node: {type(node).__name__}")
        if isinstance(node, ast.Name) and node.id.startswith("_"):
            raise ExpressionError(f"Private names are not allowed: {node.id}")
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise ExpressionError(f"Private attributes are not allowed: {node.attr}")
        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise ExpressionError("Only direct safe function calls are allowed")
            if node.func.id not in SAFE_FUNCTIONS:
                raise ExpressionError(f"Function '{node.func.id}' is not allowed")
    return tree


def evaluate(expression: str, context: Mapping[str, Any]) -> Any:
    """
    Evaluate a restricted expression against a context mapping.

    Raises:
        ExpressionError: If the expression is invalid or evaluation fails.
    """
    tree = compile_expression(expression)
    try:
        return _SafeEvaluator(context).eval(tree)
    except ExpressionError:
        raise
    except Exception as e:
        raise ExpressionError(f"Expression '{expression}' failed: {e}") from e


def evaluate_bool(expression: str, context: Mapping[str, Any]) -> bool:
    """Evaluate an expression and coerce the result to bool."""
    return bool(evaluate(expression, context))


class _NameRewriter(ast.NodeTransformer):
    """Renames bare names and ``container.<name>`` / ``container["<name>"]`` keys."""

    def __init__(self, names: Mapping[str, str], container: str):
        self.names = names
        self.container = container
        self.changed = False

    def _renamed(self, name: Any) -> Any:
        if isinstance(name, str) and name in self.names and name not in _LITERAL_NAMES:
            self.changed = True
            return self.names[name]
        return name

    def _is_container(self, node: ast.AST) -> bool:
        return isinstance(node, ast.Name) and node.id == self.container

    def visit_Name(self, node: ast.Name) -> ast.AST:
        return ast.copy_location(ast.Name(id=self._renamed(node.id), ctx=node.ctx), node)

    def visit_Attribute(self, node: ast.Attribute) -> ast.AST:
        if self._is_container(node.value):
            return ast.copy_location(
                ast.Attribute(value=node.value, attr=self._renamed(node.attr), ctx=node.ctx), node
            )
        self.generic_visit(node)
        return node

    def visit_Subscript(self, node: ast.Subscript) -> ast.AST:
        if self._is_container(node.value) and isinstance(node.slice, ast.Constant):
            node.slice = ast.copy_location(ast.Constant(value=self._renamed(node.slice.value)), node.slice)
            return node
        self.generic_visit(node)
        return node

    def visit_Call(self, node: ast.Call) -> ast.AST:
        # Function names come from SAFE_FUNCTIONS, never from the context
        node.args = [self.visit(arg) for arg in node.args]
        node.keywords = [self.visit(keyword) for keyword in node.keywords]
        return node


def rename_names(expression: str, names: Mapping[str, str], container: str = "nodes") -> str:
    """
    Rename context names used by an expression.

    ``fetch.total > 3`` and ``nodes.fetch.total > 3`` both become
    ``node_ab12.total > 3`` style expressions for ``{"fetch": "node_ab12"}``.
    Expressions that use none of the names are returned unchanged.

    Raises:
        ExpressionError: If the expression is invalid.
    """
    tree = compile_expression(expression)
    rewriter = _NameRewriter(names, container)
    tree = rewriter.visit(tree)
    if not rewriter.changed:
        return expression
    return ast.unparse(tree)


__all__ = [
    "SAFE_FUNCTIONS",
    "compile_expression",
    "evaluate",
    "evaluate_bool",
    "rename_names",
]
