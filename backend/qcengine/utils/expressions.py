"""Restricted formula evaluator for computed table columns.

Formulas are single Python-syntax expressions such as::

    cols.value_a + cols.value_b
    round(avg([cols.w1, cols.w2, cols.w3]), 2)
    'OK' if cols.measured <= cols.limit else 'NOT OK'

They are parsed with :mod:`ast` and walked node by node; nothing is handed to
``eval``.  Only the helpers in :data:`HELPERS` and the bindings ``cols``,
``value``, ``t`` and ``row_index`` are visible.

Compilation and evaluation both fail closed: a bad formula compiles to an
expression whose every call returns :data:`NOT_COMPUTABLE`, and any runtime
error (unknown column, division by zero, type mismatch, non-finite result)
degrades a single invocation to the same sentinel.
"""

from __future__ import annotations

import ast
import logging
import math
import operator
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 500
DEFAULT_MAX_NODES = 200
# Largest exponent accepted by ``**``
MAX_POWER_EXPONENT = 64
# Largest result of ``**``, in bits, computed before the power is taken
MAX_POWER_RESULT_BITS = 1024


class _NotComputable:
    """Marker for a cell whose value could not be computed."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "NOT_COMPUTABLE"

    def __bool__(self):
        return False

    def __reduce__(self):
        return (_NotComputable, ())


NOT_COMPUTABLE = _NotComputable()


def is_computable(value: Any) -> bool:
    return value is not NOT_COMPUTABLE


class ExpressionError(ValueError):
    """Raised inside the evaluator; never escapes :class:`CompiledExpression`."""


def normalize_key(raw, position: int = 0) -> str:
    """Lower-case a column key and squash anything outside [a-z0-9_]."""
    key = re.sub(r"[^a-z0-9_]+", "_", str(raw or "").strip().lower())
    return key or f"col{position}"


# ---------------------------------------------------------------------------
# Helpers exposed to formulas
# ---------------------------------------------------------------------------

def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _flatten(args) -> list:
    if len(args) == 1 and isinstance(args[0], (list, tuple)):
        return list(args[0])
    return list(args)


def _helper_sum(*args) -> float:
    total = 0.0
    for v in _flatten(args):
        n = _as_number(v)
        if n is not None and not math.isnan(n):
            total += n
    return total


def _helper_avg(*args) -> float:
    nums = [n for n in (_as_number(v) for v in _flatten(args)) if n is not None and not math.isnan(n)]
    return sum(nums) / len(nums) if nums else 0.0


def _helper_min(*args) -> float:
    nums = [_as_number(v) for v in _flatten(args)]
    if not nums or any(n is None for n in nums):
        raise ExpressionError("min() needs numeric arguments")
    return min(nums)


def _helper_max(*args) -> float:
    nums = [_as_number(v) for v in _flatten(args)]
    if not nums or any(n is None for n in nums):
        raise ExpressionError("max() needs numeric arguments")
    return max(nums)


def round_half_up(value: Any, decimals: int = 0) -> float:
    """Round like the browser tables do: halves go up, not to even."""
    n = _as_number(value)
    if n is None:
        raise ExpressionError(f"round() needs a number, got {value!r}")
    factor = 10 ** int(decimals)
    return math.floor(n * factor + 0.5) / factor


def _helper_clamp(value, lo, hi) -> float:
    n, low, high = _as_number(value), _as_number(lo), _as_number(hi)
    if n is None or low is None or high is None:
        raise ExpressionError("clamp() needs numeric arguments")
    return max(low, min(high, n))


HELPERS = {
    "sum": _helper_sum,
    "avg": _helper_avg,
    "min": _helper_min,
    "max": _helper_max,
    "round": round_half_up,
    "clamp": _helper_clamp,
}

# Names a formula may read besides the helpers
BINDING_NAMES = ("cols", "value", "t", "row_index")

_BINOPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Not: operator.not_,
}
_COMPARE = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}
_ALLOWED_NODES = (
    ast.Expression, ast.Constant, ast.Name, ast.Load, ast.Attribute, ast.Subscript,
    ast.BinOp, ast.UnaryOp, ast.BoolOp, ast.Compare, ast.IfExp, ast.Call,
    ast.List, ast.Tuple, ast.And, ast.Or,
    *_BINOPS.keys(), *_UNARY.keys(), *_COMPARE.keys(),
)


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------

def _column_key(node: ast.AST) -> Optional[str]:
    """Return the column key for ``cols.key`` / ``cols['key']``, else None."""
    if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name) and node.value.id == "cols":
        return node.attr
    if isinstance(node, ast.Subscript) and isinstance(node.value, ast.Name) and node.value.id == "cols":
        key = node.slice
        if isinstance(key, ast.Constant) and isinstance(key.value, str):
            return key.value
    return None


def _check_tree(tree: ast.Expression, max_nodes: int) -> Set[str]:
    """Validate the parsed tree and return the column keys it reads."""
    references: Set[str] = set()
    count = 0
    for node in ast.walk(tree):
        count += 1
        if count > max_nodes:
            raise ExpressionError(f"formula exceeds {max_nodes} nodes")
        if not isinstance(node, _ALLOWED_NODES):
            raise ExpressionError(f"unsupported syntax: {type(node).__name__}")
        if isinstance(node, (ast.Attribute, ast.Subscript)):
            key = _column_key(node)
            if key is None:
                raise ExpressionError("only cols.<key> or cols['<key>'] lookups are allowed")
            references.add(key)
        elif isinstance(node, ast.Name):
            if node.id not in HELPERS and node.id not in BINDING_NAMES:
                raise ExpressionError(f"unknown name '{node.id}'")
        elif isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in HELPERS:
                raise ExpressionError("only helper functions may be called")
            if node.keywords:
                raise ExpressionError("keyword arguments are not supported")
        elif isinstance(node, ast.Constant):
            if not (node.value is None or isinstance(node.value, (bool, int, float, str))):
                raise ExpressionError("unsupported constant")
    return references


def formula_references(expression: str) -> Set[str]:
    """Column keys referenced by a formula; empty when it does not parse."""
    try:
        tree = ast.parse((expression or "").strip(), mode="eval")
        return _check_tree(tree, max_nodes=10**6)
    except (SyntaxError, ExpressionError, ValueError):
        return set()


@dataclass(frozen=True)
class EvaluationOutcome:
    value: Any
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CompiledExpression:
    """A formula ready to be called against a row's bindings."""

    def __init__(self, source: str, tree: Optional[ast.Expression] = None,
                 error: Optional[str] = None, references: Optional[Set[str]] = None):
        self.source = source
        self._tree = tree
        self.error = error
        self.references = frozenset(references or ())

    @property
    def ok(self) -> bool:
        return self.error is None

    def evaluate(self, cols: Mapping[str, Any], value: Any = None,
                 t: Optional[int] = None, row_index: Optional[int] = None) -> EvaluationOutcome:
        if self._tree is None:
            return EvaluationOutcome(NOT_COMPUTABLE, self.error or "formula did not compile")
        bindings = {"cols": cols, "value": value, "t": t, "row_index": row_index}
        try:
            result = _eval_node(self._tree.body, bindings)
        except ZeroDivisionError:
            return EvaluationOutcome(NOT_COMPUTABLE, "division by zero")
        except KeyError as exc:
            return EvaluationOutcome(NOT_COMPUTABLE, f"unknown column {exc.args[0]!r}")
        except (ExpressionError, TypeError, ValueError, OverflowError) as exc:
            return EvaluationOutcome(NOT_COMPUTABLE, str(exc) or type(exc).__name__)
        return _check_result(result)

    def __call__(self, cols: Mapping[str, Any], value: Any = None,
                 t: Optional[int] = None, row_index: Optional[int] = None) -> Any:
        return self.evaluate(cols, value=value, t=t, row_index=row_index).value

    def __repr__(self):
        state = "ok" if self.ok else f"error={self.error!r}"
        return f"CompiledExpression({self.source!r}, {state})"


def _check_result(result: Any) -> EvaluationOutcome:
    """Only plain scalars leave the evaluator; numbers must fit a finite float."""
    if result is None or isinstance(result, (bool, str)):
        return EvaluationOutcome(result)
    if not isinstance(result, (int, float)):
        return EvaluationOutcome(NOT_COMPUTABLE, f"unsupported result type {type(result).__name__}")
    try:
        finite = math.isfinite(float(result))
    except OverflowError:
        finite = False
    if not finite:
        return EvaluationOutcome(NOT_COMPUTABLE, "non-finite result")
    return EvaluationOutcome(result)


def compile_expression(expression: str, max_length: int = DEFAULT_MAX_LENGTH,
                       max_nodes: int = DEFAULT_MAX_NODES) -> CompiledExpression:
    """Compile a formula string. Never raises."""
    source = expression if isinstance(expression, str) else ""
    if not source.strip():
        return CompiledExpression(source, error="empty formula")
    if len(source) > max_length:
        logger.warning(f"Formula rejected, longer than {max_length} characters")
        return CompiledExpression(source, error=f"formula longer than {max_length} characters")
    try:
        tree = ast.parse(source.strip(), mode="eval")
        references = _check_tree(tree, max_nodes)
    except SyntaxError as exc:
        logger.warning(f"Failed to compile formula {source!r}: {exc.msg}")
        return CompiledExpression(source, error=f"syntax error: {exc.msg}")
    except (ExpressionError, ValueError) as exc:
        logger.warning(f"Failed to compile formula {source!r}: {exc}")
        return CompiledExpression(source, error=str(exc))
    return CompiledExpression(source, tree=tree, references=references)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _eval_node(node: ast.AST, bindings: Dict[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        if node.id in HELPERS:
            return HELPERS[node.id]
        if node.id == "cols":
            raise ExpressionError("cols must be used as cols.<key>")
        if bindings.get(node.id) is None and node.id in ("t", "row_index"):
            raise ExpressionError(f"'{node.id}' is not bound here")
        return bindings[node.id]
    if isinstance(node, (ast.Attribute, ast.Subscript)):
        key = _column_key(node)
        cols = bindings["cols"]
        if key not in cols:
            # keys are stored normalized, formulas may spell them as entered
            if normalize_key(key) not in cols:
                raise KeyError(key)
            key = normalize_key(key)
        found = cols[key]
        if found is NOT_COMPUTABLE:
            raise ExpressionError(f"column '{key}' is not computable")
        return found
    if isinstance(node, ast.BinOp):
        left = _eval_node(node.left, bindings)
        right = _eval_node(node.right, bindings)
        _check_operands(node.op, left, right)
        return _BINOPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp):
        return _UNARY[type(node.op)](_eval_node(node.operand, bindings))
    if isinstance(node, ast.BoolOp):
        result = None
        for operand in node.values:
            result = _eval_node(operand, bindings)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result
    if isinstance(node, ast.Compare):
        left = _eval_node(node.left, bindings)
        for op, comparator in zip(node.ops, node.comparators):
            right = _eval_node(comparator, bindings)
            if not _COMPARE[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.IfExp):
        if _eval_node(node.test, bindings):
            return _eval_node(node.body, bindings)
        return _eval_node(node.orelse, bindings)
    if isinstance(node, (ast.List, ast.Tuple)):
        return [_eval_node(elt, bindings) for elt in node.elts]
    if isinstance(node, ast.Call):
        func = HELPERS[node.func.id]
        args = [_eval_node(arg, bindings) for arg in node.args]
        return func(*args)
    raise ExpressionError(f"unsupported expression: {type(node).__name__}")


def _check_operands(op: ast.operator, left: Any, right: Any) -> None:
    if isinstance(left, bool) or isinstance(right, bool):
        return
    if isinstance(op, ast.Pow) and isinstance(right, (int, float)) and abs(right) > MAX_POWER_EXPONENT:
        raise ExpressionError(f"exponent larger than {MAX_POWER_EXPONENT}")
    if isinstance(op, ast.Pow) and isinstance(left, (int, float)) and isinstance(right, (int, float)):
        magnitude = abs(left)
        if magnitude > 1 and right > 0:
            try:
                bits = right * math.log2(magnitude)
            except OverflowError:
                bits = math.inf
            if bits > MAX_POWER_RESULT_BITS:
                raise ExpressionError(f"result of ** larger than {MAX_POWER_RESULT_BITS} bits")
    if isinstance(op, ast.Mult) and (isinstance(left, (str, list)) or isinstance(right, (str, list))):
        raise ExpressionError("sequence repetition is not supported")
    if isinstance(left, list) or isinstance(right, list):
        raise ExpressionError("arithmetic on lists is not supported")
