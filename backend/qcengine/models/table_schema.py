"""Declarative inspection-table definitions.

A table definition arrives from the host (usually pasted JSON produced by the
table editor) and is validated once with marshmallow.  The loaded objects are
read-only for the rest of the session; rows never live here.
"""

import logging

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    pre_load,
    validate,
    validates_schema,
)

from ..utils.expressions import formula_references, normalize_key

logger = logging.getLogger(__name__)

VALUE_TYPES = ("text", "number", "date", "time", "choice", "boolean")
HEADER_POSITIONS = ("top", "bottom")

# Older editor payloads use these names
_LEGACY_TYPES = {"select": "choice", "textarea": "text", "checkbox": "boolean", "bool": "boolean"}
_COLUMN_ALIASES = {
    "type": "valueType",
    "options": "choices",
    "default": "defaultValue",
    "compute": "formula",
    "timeSeries": "isTimeSeries",
    "conditional": "conditionalRules",
}
_RULE_ALIASES = {"when": "whenExpression", "continue": "continueAfterMatch"}


def _apply_aliases(data: dict, aliases: dict) -> dict:
    out = dict(data)
    for old, new in aliases.items():
        if old in out:
            legacy = out.pop(old)
            out.setdefault(new, legacy)
    return out


# -----------------------------------------------------------------------------
# Marshmallow schemas
# -----------------------------------------------------------------------------

class ConditionalRuleSchema(Schema):
    """One conditional-formatting rule of a column"""

    class Meta:
        unknown = EXCLUDE

    when_expression = fields.Str(required=True, data_key="whenExpression",
                                 validate=validate.Length(min=1))
    add_class = fields.Str(allow_none=True, load_default=None, data_key="addClass")
    style = fields.Dict(keys=fields.Str(), allow_none=True, load_default=None)
    continue_after_match = fields.Bool(load_default=False, data_key="continueAfterMatch")

    @pre_load
    def accept_legacy_names(self, data, **kwargs):
        if isinstance(data, dict):
            return _apply_aliases(data, _RULE_ALIASES)
        return data

    @post_load
    def make_rule(self, data, **kwargs):
        return ConditionalRule(**data)


class ColumnSchema(Schema):
    """Column definition; a column with a formula is never a direct input"""

    class Meta:
        unknown = EXCLUDE

    key = fields.Str(required=True, validate=validate.Length(min=1, max=64))
    label = fields.Str(required=True)
    value_type = fields.Str(load_default="text", data_key="valueType",
                            validate=validate.OneOf(VALUE_TYPES))
    choices = fields.List(fields.Str(), load_default=list)
    required = fields.Bool(load_default=False)
    min = fields.Float(allow_none=True, load_default=None)
    max = fields.Float(allow_none=True, load_default=None)
    step = fields.Float(allow_none=True, load_default=None)
    decimals = fields.Int(allow_none=True, load_default=None, validate=validate.Range(min=0, max=10))
    default_value = fields.Raw(allow_none=True, load_default=None, data_key="defaultValue")
    is_time_series = fields.Bool(load_default=False, data_key="isTimeSeries")
    formula = fields.Str(allow_none=True, load_default=None)
    conditional_rules = fields.List(fields.Nested(ConditionalRuleSchema), load_default=list,
                                    data_key="conditionalRules")

    @pre_load
    def normalize_column(self, data, **kwargs):
        if not isinstance(data, dict):
            return data
        out = _apply_aliases(data, _COLUMN_ALIASES)
        out["key"] = normalize_key(out.get("key"), 1)
        if not out.get("label"):
            out["label"] = out["key"]
        value_type = str(out.get("valueType") or "text").strip().lower()
        out["valueType"] = _LEGACY_TYPES.get(value_type, value_type)
        if isinstance(out.get("formula"), str) and not out["formula"].strip():
            out["formula"] = None
        return out

    @validates_schema
    def check_constraints(self, data, **kwargs):
        low, high = data.get("min"), data.get("max")
        if low is not None and high is not None and low > high:
            raise ValidationError("min must not exceed max", field_name="min")
        if data.get("value_type") == "choice" and not data.get("choices"):
            raise ValidationError("choice columns need at least one choice", field_name="choices")

    @post_load
    def make_column(self, data, **kwargs):
        return ColumnDefinition(**data)


class SectionSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    title = fields.Str(load_default="")
    row_count = fields.Int(required=True, data_key="rowCount", validate=validate.Range(min=0))

    @pre_load
    def accept_legacy_names(self, data, **kwargs):
        if isinstance(data, dict):
            return _apply_aliases(data, {"rows": "rowCount"})
        return data

    @post_load
    def make_section(self, data, **kwargs):
        return Section(**data)


class TableSchemaSchema(Schema):
    """Marshmallow schema for a whole inspection table"""

    class Meta:
        unknown = EXCLUDE

    name = fields.Str(load_default="Table")
    columns = fields.List(fields.Nested(ColumnSchema), required=True,
                          validate=validate.Length(min=1))
    rows = fields.Int(allow_none=True, load_default=None, validate=validate.Range(min=0))
    sections = fields.List(fields.Nested(SectionSchema), load_default=list)
    borders_visible = fields.Bool(load_default=True, data_key="bordersVisible")
    header_position = fields.Str(load_default="top", data_key="headerPosition",
                                 validate=validate.OneOf(HEADER_POSITIONS))
    # Minutes between two time slots of a time-series table
    inspection_period = fields.Int(load_default=60, data_key="inspectionPeriod",
                                   validate=validate.Range(min=1))

    @pre_load
    def normalize_table(self, data, **kwargs):
        if not isinstance(data, dict):
            return data
        out = _apply_aliases(data, {"borders": "bordersVisible"})
        out["headerPosition"] = "bottom" if out.get("headerPosition") == "bottom" else "top"
        columns = out.get("columns")
        if isinstance(columns, list):
            # keys are defaulted by position, so fill them here where the index is known
            out["columns"] = [
                dict(col, key=normalize_key(col.get("key"), i), label=col.get("label") or f"Column {i}")
                if isinstance(col, dict) else col
                for i, col in enumerate(columns, start=1)
            ]
        return out

    @validates_schema
    def check_table(self, data, **kwargs):
        columns = data.get("columns") or []
        seen = set()
        for col in columns:
            if col.key in seen:
                raise ValidationError(f"duplicate column key '{col.key}'", field_name="columns")
            seen.add(col.key)
        cycle = find_formula_cycle(columns)
        if cycle:
            raise ValidationError(
                "formula columns reference each other in a cycle: " + " -> ".join(cycle),
                field_name="columns",
            )

    @post_load
    def make_table(self, data, **kwargs):
        return TableSchema(**data)


def find_formula_cycle(columns):
    """Return the keys of one formula cycle (first key repeated at the end), or None."""
    graph = {
        col.key: sorted({normalize_key(ref) for ref in formula_references(col.formula)})
        for col in columns
        if col.formula
    }
    visiting, done = set(), set()

    def visit(key, path):
        visiting.add(key)
        path.append(key)
        for dep in graph.get(key, ()):
            if dep not in graph:
                continue
            if dep in visiting:
                return path[path.index(dep):] + [dep]
            if dep not in done:
                found = visit(dep, path)
                if found:
                    return found
        visiting.discard(key)
        done.add(key)
        path.pop()
        return None

    for key in graph:
        if key not in done:
            found = visit(key, [])
            if found:
                return found
    return None


# -----------------------------------------------------------------------------
# Model classes
# -----------------------------------------------------------------------------

class ConditionalRule:
    def __init__(self, **kwargs):
        self.when_expression = kwargs.get("when_expression")
        self.add_class = kwargs.get("add_class")
        self.style = kwargs.get("style")
        self.continue_after_match = bool(kwargs.get("continue_after_match", False))

    def format_tag(self):
        """The cosmetic tag handed back to the host when this rule matches."""
        tag = {}
        if self.add_class:
            tag["addClass"] = self.add_class
        if self.style:
            tag["style"] = dict(self.style)
        return tag


class ColumnDefinition:
    """Column definition model"""

    def __init__(self, **kwargs):
        self.key = kwargs.get("key")
        self.label = kwargs.get("label")
        self.value_type = kwargs.get("value_type", "text")
        self.choices = list(kwargs.get("choices") or [])
        self.required = bool(kwargs.get("required", False))
        self.min = kwargs.get("min")
        self.max = kwargs.get("max")
        self.step = kwargs.get("step")
        self.decimals = kwargs.get("decimals")
        self.default_value = kwargs.get("default_value")
        self.is_time_series = bool(kwargs.get("is_time_series", False))
        self.formula = kwargs.get("formula")
        self.conditional_rules = list(kwargs.get("conditional_rules") or [])

    @property
    def is_computed(self):
        return bool(self.formula)

    @property
    def read_only(self):
        return self.is_computed

    def __repr__(self):
        return f"ColumnDefinition(key={self.key!r}, value_type={self.value_type!r})"


class Section:
    def __init__(self, **kwargs):
        self.title = kwargs.get("title", "")
        self.row_count = int(kwargs.get("row_count", 0))


class TableSchema:
    """Table definition model"""

    def __init__(self, **kwargs):
        self.name = kwargs.get("name", "Table")
        self.columns = list(kwargs.get("columns") or [])
        self.rows = kwargs.get("rows")
        self.sections = list(kwargs.get("sections") or [])
        self.borders_visible = kwargs.get("borders_visible", True)
        self.header_position = kwargs.get("header_position", "top")
        self.inspection_period = kwargs.get("inspection_period", 60)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def total_rows(self):
        """Explicit row count, otherwise the sum of the section row counts."""
        if self.rows is not None:
            return self.rows
        return sum(section.row_count for section in self.sections)

    def column(self, key):
        for col in self.columns:
            if col.key == key:
                return col
        raise KeyError(key)

    @property
    def computed_columns(self):
        return [col for col in self.columns if col.is_computed]

    @property
    def input_columns(self):
        return [col for col in self.columns if not col.is_computed]

    def section_for_row(self, index):
        """Return the section holding data row ``index`` (0-based), or None."""
        if index < 0:
            return None
        offset = 0
        for section in self.sections:
            if index < offset + section.row_count:
                return section
            offset += section.row_count
        return None

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def to_dict(self):
        """Dump to the JSON shape the host stores; loads back to an identical table."""
        return table_schema_schema.dump(self)

    @classmethod
    def from_dict(cls, data: dict):
        """Validate and build a table definition. Raises ValidationError."""
        try:
            return table_schema_schema.load(data)
        except ValidationError as exc:
            logger.error(f"Rejected table definition: {exc.messages}")
            raise


table_schema_schema = TableSchemaSchema()


def load_table_schema(data):
    return TableSchema.from_dict(data)
