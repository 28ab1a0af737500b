"""Computation endpoints used by the report builder front end"""

import logging

from flask import Blueprint, current_app, jsonify, request
from marshmallow import ValidationError

from ..models.sampling_plan import SamplingPlanError
from ..models.table_schema import TableSchema
from ..utils.aql import classify_sample, inspect_weights
from ..utils.computed_columns import CompiledTable, evaluate_table
from ..utils.relaxed_json import parse_relaxed_json
from ..utils.statistics import aggregate_population, aggregate_sample
from ..utils.tolerance import compute_tolerance_limits

logger = logging.getLogger(__name__)

engine_bp = Blueprint("engine", __name__, url_prefix="/api/engine")


def _plan():
    return current_app.extensions["sampling_plan"]


def _quality_level(payload):
    return payload.get("quality_level") or current_app.config["DEFAULT_QUALITY_LEVEL"]


def _values(payload, key="values"):
    values = payload.get(key)
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValueError(f"'{key}' must be a list")
    return values


def _sample_size(payload):
    raw = payload.get("sample_size")
    try:
        size = int(raw)
    except (TypeError, ValueError):
        size = -1
    if isinstance(raw, bool) or size < 0:
        raise ValueError("sample_size must be a non-negative integer")
    return size


def _load_schema(payload):
    raw = payload.get("schema")
    if raw is None and "text" in payload:
        raw = payload["text"]
    if raw is None:
        raise ValueError("'schema' is required")
    return TableSchema.from_dict(parse_relaxed_json(raw))


def _compiled_table(schema):
    return CompiledTable(
        schema,
        max_length=current_app.config["EXPRESSION_MAX_LENGTH"],
        max_nodes=current_app.config["EXPRESSION_MAX_NODES"],
    )


@engine_bp.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({"success": False, "message": "Invalid table definition", "errors": e.messages}), 400


@engine_bp.errorhandler(SamplingPlanError)
def handle_plan_error(e):
    logger.error(f"Sampling plan lookup failed: {e}")
    return jsonify({"success": False, "message": str(e), "error": "SAMPLING_PLAN_ERROR"}), 500


@engine_bp.errorhandler(ValueError)
def handle_bad_input(e):
    return jsonify({"success": False, "message": str(e)}), 400


# -----------------------------------------------------------------------------
# Tolerance / statistics / AQL
# -----------------------------------------------------------------------------

@engine_bp.route("/tolerance", methods=["POST"])
def tolerance():
    """Tare and pack limits for {"nominal_weight": number}"""
    payload = request.get_json(silent=True) or {}
    result = compute_tolerance_limits(payload.get("nominal_weight"))
    return jsonify({"success": True, "data": dict(result.to_dict(), configured=result.configured)})


@engine_bp.route("/aggregate", methods=["POST"])
def aggregate():
    """Count/mean/stddev; mode "population" (default) or "sample"."""
    payload = request.get_json(silent=True) or {}
    mode = payload.get("mode", "population")
    if mode not in ("population", "sample"):
        return jsonify({"success": False, "message": "mode must be 'population' or 'sample'"}), 400
    values = _values(payload)
    result = aggregate_population(values) if mode == "population" else aggregate_sample(values)
    return jsonify({"success": True, "data": result.to_dict()})


@engine_bp.route("/classify", methods=["POST"])
def classify():
    """Accept/reject a sample.

    Expected JSON payload: {
        "values": [number, ...],
        "sample_size": int,
        "quality_level": "1.0%",      # optional
        "tare1": number, "tare2": number   # or "nominal_weight": number
    }
    """
    payload = request.get_json(silent=True) or {}
    if "sample_size" not in payload:
        return jsonify({"success": False, "message": "sample_size is required"}), 400

    if "tare1" in payload and "tare2" in payload:
        try:
            tare1, tare2 = float(payload["tare1"]), float(payload["tare2"])
        except (TypeError, ValueError):
            return jsonify({"success": False, "message": "tare1 and tare2 must be numbers"}), 400
    elif "nominal_weight" in payload:
        limits = compute_tolerance_limits(payload["nominal_weight"])
        tare1, tare2 = limits.tare1, limits.tare2
    else:
        return jsonify({"success": False, "message": "tare1/tare2 or nominal_weight required"}), 400

    result = classify_sample(
        _values(payload), tare1, tare2, _sample_size(payload), _quality_level(payload), plan=_plan()
    )
    return jsonify({"success": True, "data": result.to_dict()})


@engine_bp.route("/inspect-weights", methods=["POST"])
def inspect_weight_sample():
    payload = request.get_json(silent=True) or {}
    missing = [k for k in ("nominal_weight", "sample_size") if k not in payload]
    if missing:
        return jsonify({"success": False, "message": f"Missing fields: {', '.join(missing)}"}), 400
    report = inspect_weights(
        _values(payload),
        payload["nominal_weight"],
        _sample_size(payload),
        _quality_level(payload),
        plan=_plan(),
    )
    return jsonify({"success": True, "data": report})


@engine_bp.route("/sampling-plan", methods=["GET"])
def sampling_plan():
    return jsonify({"success": True, "data": _plan().to_dict()})


# -----------------------------------------------------------------------------
# Table definitions and computed columns
# -----------------------------------------------------------------------------

@engine_bp.route("/schema/normalize", methods=["POST"])
def normalize_schema():
    """Validate a (possibly relaxed JSON) table definition and return its stored form."""
    payload = request.get_json(silent=True) or {}
    schema = _load_schema(payload)
    return jsonify({"success": True, "data": schema.to_dict(), "total_rows": schema.total_rows})


@engine_bp.route("/evaluate-row", methods=["POST"])
def evaluate_row():
    payload = request.get_json(silent=True) or {}
    schema = _load_schema(payload)
    row = payload.get("row") or {}
    if not isinstance(row, dict):
        return jsonify({"success": False, "message": "'row' must be an object"}), 400
    result = _compiled_table(schema).evaluate_row(row, t=payload.get("t"), row_index=payload.get("row_index"))
    return jsonify({"success": True, "data": result.to_dict()})


@engine_bp.route("/evaluate-table", methods=["POST"])
def evaluate_rows():
    payload = request.get_json(silent=True) or {}
    schema = _load_schema(payload)
    rows = payload.get("rows") or []
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        return jsonify({"success": False, "message": "'rows' must be a list of objects"}), 400
    data = evaluate_table(
        schema,
        rows,
        sample_keys=payload.get("sample_keys"),
        max_length=current_app.config["EXPRESSION_MAX_LENGTH"],
        max_nodes=current_app.config["EXPRESSION_MAX_NODES"],
    )
    return jsonify({"success": True, "data": data})
