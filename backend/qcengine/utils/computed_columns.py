"""Per-row evaluation of formula columns and conditional formatting.

Evaluation order for one row:

1. snapshot the directly entered (non-formula) values, typed by column;
2. evaluate formula columns in declaration order against the snapshot, each
   result joining the snapshot before the next formula runs.  A formula that
   reads a formula column declared after it sees no value and yields
   ``NOT_COMPUTABLE``;
3. run each column's conditional rules against the final snapshot and the
   column's own value.  The first matching rule applies its tag and stops,
   unless it is marked to continue.

Nothing is cached between calls; the same inputs always give the same result.
Failures stay inside the failing cell and are reported as diagnostics.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..models.table_schema import ColumnDefinition, TableSchema
from .expressions import (
    DEFAULT_MAX_LENGTH,
    DEFAULT_MAX_NODES,
    NOT_COMPUTABLE,
    CompiledExpression,
    ExpressionError,
    compile_expression,
    normalize_key,
    round_half_up,
)
from .statistics import column_statistics, row_statistics

logger = logging.getLogger(__name__)

_TRUE = {"true", "1", "yes", "y", "on"}
_FALSE = {"false", "0", "no", "n", "off"}


@dataclass(frozen=True)
class CellDiagnostic:
    column_key: str
    stage: str  # "formula" or "rule"
    message: str
    rule_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"column_key": self.column_key, "stage": self.stage, "message": self.message}
        if self.rule_index is not None:
            out["rule_index"] = self.rule_index
        return out


@dataclass
class RowResult:
    values: Dict[str, Any]
    formatting: Dict[str, List[Dict[str, Any]]]
    diagnostics: List[CellDiagnostic] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "values": {k: (None if v is NOT_COMPUTABLE else v) for k, v in self.values.items()},
            "formatting": self.formatting,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


def coerce_input(column: ColumnDefinition, raw: Any) -> Any:
    """Type a directly entered cell value by its column type."""
    if column.value_type == "number":
        if raw is None or isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)):
            return raw
        text = str(raw).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return text
        return number if math.isfinite(number) else None
    if column.value_type == "boolean":
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE:
                return True
            if lowered in _FALSE:
                return False
        return raw
    return raw


class CompiledTable:
    """Formulas and rules of a table definition compiled once per definition."""

    def __init__(self, schema: TableSchema, max_length: int = DEFAULT_MAX_LENGTH,
                 max_nodes: int = DEFAULT_MAX_NODES):
        self.schema = schema
        self.formulas: Dict[str, CompiledExpression] = {}
        self.rules: Dict[str, List[CompiledExpression]] = {}
        for col in schema.columns:
            if col.is_computed:
                self.formulas[col.key] = compile_expression(col.formula, max_length, max_nodes)
            if col.conditional_rules:
                self.rules[col.key] = [
                    compile_expression(rule.when_expression, max_length, max_nodes)
                    for rule in col.conditional_rules
                ]

    def snapshot(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Typed input values by column key; row keys may be spelled as entered."""
        row = row or {}
        by_key = {normalize_key(key): value for key, value in row.items()}
        values: Dict[str, Any] = {}
        for col in self.schema.input_columns:
            if col.key in row:
                raw = row[col.key]
            else:
                raw = by_key.get(col.key, col.default_value)
            values[col.key] = coerce_input(col, raw)
        return values

    def evaluate_row(self, row: Mapping[str, Any], t: Optional[int] = None,
                     row_index: Optional[int] = None) -> RowResult:
        values = self.snapshot(row)
        diagnostics: List[CellDiagnostic] = []

        for col in self.schema.columns:
            if not col.is_computed:
                continue
            slot = t if col.is_time_series else None
            outcome = self.formulas[col.key].evaluate(values, value=None, t=slot, row_index=row_index)
            result, error = outcome.value, outcome.error
            if outcome.ok and col.decimals is not None and isinstance(result, (int, float)) \
                    and not isinstance(result, bool):
                try:
                    result = round_half_up(result, col.decimals)
                except (ExpressionError, OverflowError, ValueError) as exc:
                    result, error = NOT_COMPUTABLE, f"cannot round to {col.decimals} decimals: {exc}"
            if error is not None:
                logger.warning(f"Column '{col.key}' not computable: {error}")
                diagnostics.append(CellDiagnostic(col.key, "formula", error))
            values[col.key] = result

        formatting: Dict[str, List[Dict[str, Any]]] = {}
        for col in self.schema.columns:
            compiled_rules = self.rules.get(col.key)
            if not compiled_rules:
                continue
            tags: List[Dict[str, Any]] = []
            own_value = values.get(col.key)
            for index, (rule, compiled) in enumerate(zip(col.conditional_rules, compiled_rules)):
                slot = t if col.is_time_series else None
                outcome = compiled.evaluate(values, value=own_value, t=slot, row_index=row_index)
                if not outcome.ok:
                    diagnostics.append(CellDiagnostic(col.key, "rule", outcome.error, rule_index=index))
                    continue
                if outcome.value:
                    tags.append(rule.format_tag())
                    if not rule.continue_after_match:
                        break
            # always present so the host clears tags from an earlier evaluation
            formatting[col.key] = tags

        return RowResult(values=values, formatting=formatting, diagnostics=diagnostics)


def evaluate_row(schema: TableSchema, row: Mapping[str, Any], t: Optional[int] = None,
                 row_index: Optional[int] = None) -> RowResult:
    """Evaluate one row of ``schema``. Never raises for bad formulas or data."""
    return CompiledTable(schema).evaluate_row(row, t=t, row_index=row_index)


def evaluate_time_series(schema: TableSchema, slots: Sequence[Mapping[str, Any]],
                         row_index: Optional[int] = None) -> List[RowResult]:
    """Evaluate one snapshot per time slot, binding ``t`` to the slot index."""
    compiled = CompiledTable(schema)
    return [compiled.evaluate_row(slot, t=t, row_index=row_index) for t, slot in enumerate(slots)]


def default_sample_keys(schema: TableSchema) -> List[str]:
    return [col.key for col in schema.input_columns if col.value_type == "number"]


def evaluate_table(schema: TableSchema, rows: Sequence[Mapping[str, Any]],
                   sample_keys: Optional[Sequence[str]] = None,
                   max_length: int = DEFAULT_MAX_LENGTH,
                   max_nodes: int = DEFAULT_MAX_NODES) -> Dict[str, Any]:
    """Evaluate every row and add the footer (per column) and per-row statistics."""
    compiled = CompiledTable(schema, max_length=max_length, max_nodes=max_nodes)
    results = [compiled.evaluate_row(row, row_index=index) for index, row in enumerate(rows or [])]
    evaluated = [result.values for result in results]

    keys = list(sample_keys) if sample_keys is not None else default_sample_keys(schema)
    number_columns = [col.key for col in schema.columns if col.value_type == "number"]

    return {
        "rows": [result.to_dict() for result in results],
        "column_statistics": {
            key: column_statistics(evaluated, key).to_dict() for key in number_columns
        },
        "row_statistics": [row_statistics(values, keys).to_dict() for values in evaluated],
    }
