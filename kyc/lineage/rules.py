"""Rule expressions for derived attributes.

Rules are written in a small expression language::

    TAX_RESIDENCY_COUNTRY in ["IR", "KP", "SY"] && !IS_EXEMPT
    max(UBO_PERCENT) > 25 || len(UBO_NAME) > 3

Literals are numbers, quoted strings, ``true``, ``false``, ``nil`` and list
literals. Operators are ``&&``/``and``, ``||``/``or``, ``!``/``not``,
comparisons, ``in``/``not in`` and ``+ - * / %``. The functions ``len``,
``max``, ``min``, ``sum`` and ``abs`` are available.

A rule is translated to Python expression syntax, parsed with ``ast`` and
checked against a whitelist of node types once at compile time. Running a
compiled rule walks that tree against an environment mapping; nothing is
passed to ``eval``.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from kyc.errors import CompileError, EvaluationError

_TOKEN_RE = re.compile(
    r"""
    (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<and>&&)
    | (?P<or>\|\|)
    | (?P<not>!(?!=))
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    | (?P<other>.)
    """,
    re.VERBOSE | re.DOTALL,
)

_KEYWORD_LITERALS = {"true": "True", "false": "False", "nil": "None"}

_ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.Mod,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.List,
    ast.Tuple,
    ast.Call,
)

# name -> (min args, max args or None for unbounded)
_FUNCTION_ARITY: dict[str, tuple[int, int | None]] = {
    "len": (1, 1),
    "max": (1, None),
    "min": (1, None),
    "sum": (1, 1),
    "abs": (1, 1),
}


def translate(source: str) -> str:
    """Rewrite rule syntax into the equivalent Python expression text.

    String literals are copied through untouched.
    """
    out: list[str] = []
    for match in _TOKEN_RE.finditer(source):
        kind = match.lastgroup
        text = match.group()
        if kind == "and":
            out.append(" and ")
        elif kind == "or":
            out.append(" or ")
        elif kind == "not":
            out.append(" not ")
        elif kind == "name":
            out.append(_KEYWORD_LITERALS.get(text, text))
        else:
            out.append(text)
    return "".join(out)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _describe(value: Any) -> str:
    return type(value).__name__


# =============================================================================
# Compilation
# =============================================================================


@dataclass(frozen=True)
class CompiledRule:
    """A parsed, validated rule ready to run against an environment."""

    source: str
    tree: ast.Expression
    names: frozenset[str]

    def run(self, env: Mapping[str, Any]) -> Any:
        """Evaluate the rule.

        Raises:
            EvaluationError: On an undefined name or an invalid operation.
        """
        return _Interpreter(env).visit(self.tree.body)


def _check(node: ast.AST, names: set[str]) -> None:
    """Validate ``node`` recursively, collecting referenced identifiers."""
    if not isinstance(node, _ALLOWED_NODES):
        raise CompileError(f"unsupported syntax: {type(node).__name__}")

    if isinstance(node, ast.Constant):
        if not (node.value is None or isinstance(node.value, bool | int | float | str)):
            raise CompileError(f"unsupported literal: {node.value!r}")
        return
    if isinstance(node, ast.Name):
        names.add(node.id)
        return
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTION_ARITY:
            raise CompileError(f"unknown function: {ast.unparse(node.func)}")
        if node.keywords:
            raise CompileError(f"{node.func.id}() takes no keyword arguments")
        low, high = _FUNCTION_ARITY[node.func.id]
        count = len(node.args)
        if count < low or (high is not None and count > high):
            raise CompileError(
                f"{node.func.id}() called with {count} argument(s)"
            )
        for arg in node.args:
            _check(arg, names)
        return

    for child in ast.iter_child_nodes(node):
        _check(child, names)


def compile_rule(source: str) -> CompiledRule:
    """Parse and validate a rule.

    Raises:
        CompileError: On a syntax error or a construct outside the language.
    """
    if not source or not source.strip():
        raise CompileError("empty rule")
    names: set[str] = set()
    try:
        tree = ast.parse(translate(source).strip(), mode="eval")
        _check(tree, names)
    except SyntaxError as e:
        raise CompileError(f"syntax error: {e.msg}") from e
    except (RecursionError, MemoryError) as e:
        raise CompileError("rule too deeply nested") from e
    return CompiledRule(source=source, tree=tree, names=frozenset(names))


# =============================================================================
# Interpretation
# =============================================================================


def _fn_len(value: Any) -> int:
    if not isinstance(value, list | tuple | str | dict):
        raise EvaluationError(f"len() of {_describe(value)}")
    return len(value)


def _numbers(name: str, args: list[Any]) -> list[Any]:
    values = args[0] if len(args) == 1 and isinstance(args[0], list | tuple) else args
    if not values:
        raise EvaluationError(f"{name}() of empty list")
    for value in values:
        if not _is_number(value):
            raise EvaluationError(f"{name}() of non-numeric {_describe(value)}")
    return list(values)


def _fn_max(*args: Any) -> Any:
    return max(_numbers("max", list(args)))


def _fn_min(*args: Any) -> Any:
    return min(_numbers("min", list(args)))


def _fn_sum(value: Any) -> Any:
    if not isinstance(value, list | tuple):
        raise EvaluationError(f"sum() of {_describe(value)}")
    if not value:
        return 0
    return sum(_numbers("sum", [value]))


def _fn_abs(value: Any) -> Any:
    if not _is_number(value):
        raise EvaluationError(f"abs() of {_describe(value)}")
    return abs(value)


_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": _fn_len,
    "max": _fn_max,
    "min": _fn_min,
    "sum": _fn_sum,
    "abs": _fn_abs,
}


class _Interpreter:
    """Walks a validated rule tree against an environment."""

    def __init__(self, env: Mapping[str, Any]):
        self.env = env

    def visit(self, node: ast.AST) -> Any:
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise EvaluationError(f"unsupported syntax: {type(node).__name__}")
        return method(node)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id not in self.env:
            raise EvaluationError(f"undefined name: {node.id}")
        return self.env[node.id]

    def visit_List(self, node: ast.List) -> list[Any]:
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> list[Any]:
        return [self.visit(e) for e in node.elts]

    def visit_BoolOp(self, node: ast.BoolOp) -> bool:
        is_and = isinstance(node.op, ast.And)
        for operand in node.values:
            value = self.visit(operand)
            if not isinstance(value, bool):
                op = "&&" if is_and else "||"
                raise EvaluationError(f"{op} requires booleans, got {_describe(value)}")
            # Short-circuit
            if is_and and not value:
                return False
            if not is_and and value:
                return True
        return is_and

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        value = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            if not isinstance(value, bool):
                raise EvaluationError(f"! requires a boolean, got {_describe(value)}")
            return not value
        if not _is_number(value):
            raise EvaluationError(f"unary minus of {_describe(value)}")
        return -value if isinstance(node.op, ast.USub) else value

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Add) and isinstance(left, str) and isinstance(right, str):
            return left + right
        if not (_is_number(left) and _is_number(right)):
            raise EvaluationError(
                f"arithmetic on {_describe(left)} and {_describe(right)}"
            )
        try:
            if isinstance(node.op, ast.Add):
                return left + right
            if isinstance(node.op, ast.Sub):
                return left - right
            if isinstance(node.op, ast.Mult):
                return left * right
            if isinstance(node.op, ast.Div):
                return left / right
            return left % right
        except ZeroDivisionError as e:
            raise EvaluationError("division by zero") from e

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.visit(comparator)
            if not self._compare(op, left, right):
                return False
            left = right
        return True

    @staticmethod
    def _compare(op: ast.cmpop, left: Any, right: Any) -> bool:
        if isinstance(op, ast.Eq):
            return left == right
        if isinstance(op, ast.NotEq):
            return left != right
        if isinstance(op, ast.In | ast.NotIn):
            if isinstance(right, str) and not isinstance(left, str):
                raise EvaluationError(f"in: {_describe(left)} in string")
            if not isinstance(right, list | tuple | str | dict):
                raise EvaluationError(f"in: right side is {_describe(right)}")
            try:
                found = left in right
            except TypeError as e:
                # Lists and maps cannot be looked up as map keys
                raise EvaluationError(
                    f"in: cannot look up {_describe(left)} in {_describe(right)}"
                ) from e
            return found if isinstance(op, ast.In) else not found

        ordered = (_is_number(left) and _is_number(right)) or (
            isinstance(left, str) and isinstance(right, str)
        )
        if not ordered:
            raise EvaluationError(
                f"cannot order {_describe(left)} and {_describe(right)}"
            )
        if isinstance(op, ast.Lt):
            return left < right
        if isinstance(op, ast.LtE):
            return left <= right
        if isinstance(op, ast.Gt):
            return left > right
        return left >= right

    def visit_Call(self, node: ast.Call) -> Any:
        func = _FUNCTIONS.get(getattr(node.func, "id", ""))
        if func is None:
            raise EvaluationError(f"unknown function: {ast.unparse(node.func)}")
        return func(*[self.visit(arg) for arg in node.args])
