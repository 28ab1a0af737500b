"""Pytest configuration shared across the suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, ROOT / "backend"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from qcengine import create_app  # noqa: E402
from qcengine.models.table_schema import TableSchema  # noqa: E402


@pytest.fixture()
def app():
    return create_app("testing")


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def weight_table_definition():
    """Five weighed units per row plus computed average and a status column."""
    return {
        "name": "Net weight check",
        "rows": 4,
        "inspectionPeriod": 30,
        "columns": [
            {"key": "w1", "label": "W1", "valueType": "number"},
            {"key": "w2", "label": "W2", "valueType": "number"},
            {"key": "w3", "label": "W3", "valueType": "number"},
            {
                "key": "avg_w",
                "label": "Average",
                "valueType": "number",
                "decimals": 2,
                "formula": "avg([cols.w1, cols.w2, cols.w3])",
                "conditionalRules": [
                    {"whenExpression": "value < 170", "addClass": "cf-danger"},
                    {"whenExpression": "value < 180", "addClass": "cf-warning"},
                ],
            },
            {
                "key": "status",
                "label": "Status",
                "valueType": "choice",
                "choices": ["OK", "NOT OK"],
                "formula": "'OK' if cols.avg_w >= 176.675 else 'NOT OK'",
            },
        ],
    }


@pytest.fixture()
def weight_table(weight_table_definition):
    return TableSchema.from_dict(weight_table_definition)
