import pytest

from qcengine.models.sampling_plan import SamplingPlan


def post(client, path, payload):
    return client.post(f"/api/engine{path}", json=payload)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


def test_unknown_endpoint_returns_json(client):
    response = client.get("/api/engine/nope")
    assert response.status_code == 404
    assert response.get_json()["error"] == "NOT_FOUND"


def test_wrong_method(client):
    response = client.get("/api/engine/tolerance")
    assert response.status_code == 405
    assert response.get_json()["success"] is False


def test_tolerance(client):
    response = post(client, "/tolerance", {"nominal_weight": 185})
    data = response.get_json()["data"]

    assert response.status_code == 200
    assert data["tare1"] == pytest.approx(176.675)
    assert data["tare2"] == pytest.approx(168.35)
    assert data["configured"] is True


def test_tolerance_without_nominal(client):
    data = post(client, "/tolerance", {}).get_json()["data"]
    assert data["configured"] is False
    assert data["tare1"] == 0


def test_aggregate_modes(client):
    values = [2, 4, 4, 4, 5, 5, 7, 9]
    population = post(client, "/aggregate", {"values": values}).get_json()["data"]
    sample = post(client, "/aggregate", {"values": values, "mode": "sample"}).get_json()["data"]

    assert population["stddev"] == pytest.approx(2.0)
    assert sample["stddev"] == pytest.approx(2.138, abs=1e-3)


def test_aggregate_rejects_bad_input(client):
    assert post(client, "/aggregate", {"values": [1], "mode": "median"}).status_code == 400
    response = post(client, "/aggregate", {"values": "1,2"})
    assert response.status_code == 400
    assert "values" in response.get_json()["message"]


def test_classify_with_explicit_tares(client):
    response = post(client, "/classify", {
        "values": [170, 170, 170],
        "tare1": 176.675,
        "tare2": 168.35,
        "sample_size": 3,
        "quality_level": "1.0%",
    })
    data = response.get_json()["data"]

    assert response.status_code == 200
    assert data["tare1_verdict"] == "REJECTED"
    assert data["tare2_verdict"] == "ACCEPTED"
    assert (data["ac"], data["re"]) == (0, 1)


def test_classify_with_nominal_weight_uses_default_level(client):
    data = post(client, "/classify", {"values": [185], "nominal_weight": 185, "sample_size": 20}).get_json()["data"]
    assert data["quality_level"] == "1.0%"
    assert data["bucket"] == 20


@pytest.mark.parametrize(
    "payload",
    [
        {"values": [1], "tare1": 1, "tare2": 0},
        {"values": [1], "sample_size": 3},
        {"values": [1], "sample_size": 3, "tare1": "a", "tare2": 1},
    ],
)
def test_classify_bad_requests(client, payload):
    assert post(client, "/classify", payload).status_code == 400


def test_plan_without_fallback_is_a_server_error(app):
    app.extensions["sampling_plan"] = SamplingPlan({5: {"2.5%": "0/1"}})
    response = post(app.test_client(), "/classify", {
        "values": [1], "tare1": 1, "tare2": 0, "sample_size": 5, "quality_level": "0.65%",
    })
    assert response.status_code == 500
    assert response.get_json()["error"] == "SAMPLING_PLAN_ERROR"


def test_inspect_weights(client):
    response = post(client, "/inspect-weights", {"values": [185, 170, 0], "nominal_weight": 185, "sample_size": 3})
    data = response.get_json()["data"]

    assert data["passed"] is False
    assert data["rejection_reasons"] == ["DEFECTS_REACHED_RE"]
    assert data["observations"][2]["tag"] == "not_entered"


def test_inspect_weights_requires_fields(client):
    response = post(client, "/inspect-weights", {"values": [1]})
    assert response.status_code == 400
    assert "nominal_weight" in response.get_json()["message"]


def test_sampling_plan(client):
    data = client.get("/api/engine/sampling-plan").get_json()["data"]
    assert data["20"]["1.5%"] == "1/2"
    assert "0.65%" not in data["3"]


def test_normalize_relaxed_text(client):
    text = '```json\n{name: "T", columns: [{key: "Weight 1", type: "number",},], sections: [{title: "A", rows: 2}],}\n```'
    body = post(client, "/schema/normalize", {"text": text}).get_json()

    assert body["success"] is True
    assert body["data"]["columns"][0]["key"] == "weight_1"
    assert body["data"]["columns"][0]["valueType"] == "number"
    assert body["total_rows"] == 2


def test_normalize_rejects_invalid_definition(client):
    response = post(client, "/schema/normalize", {"schema": {"columns": []}})
    body = response.get_json()

    assert response.status_code == 400
    assert "columns" in body["errors"]


def test_normalize_rejects_unparseable_text(client):
    assert post(client, "/schema/normalize", {"text": "{oops"}).status_code == 400
    assert post(client, "/schema/normalize", {}).status_code == 400


def test_evaluate_row(client, weight_table_definition):
    response = post(client, "/evaluate-row", {
        "schema": weight_table_definition,
        "row": {"w1": 170, "w2": 171, "w3": 172},
    })
    data = response.get_json()["data"]

    assert data["values"]["avg_w"] == 171
    assert data["formatting"]["avg_w"] == [{"addClass": "cf-warning"}]


def test_evaluate_row_reports_not_computable_as_null(client):
    schema = {"columns": [{"key": "a", "formula": "cols.missing + 1"}]}
    data = post(client, "/evaluate-row", {"schema": schema, "row": {}}).get_json()["data"]

    assert data["values"]["a"] is None
    assert data["diagnostics"][0]["stage"] == "formula"


def test_evaluate_row_rejects_non_object_row(client, weight_table_definition):
    response = post(client, "/evaluate-row", {"schema": weight_table_definition, "row": [1, 2]})
    assert response.status_code == 400


def test_evaluate_table(client, weight_table_definition):
    response = post(client, "/evaluate-table", {
        "schema": weight_table_definition,
        "rows": [{"w1": 180, "w2": 181, "w3": 182}, {"w1": 160, "w2": 160, "w3": 160}],
    })
    data = response.get_json()["data"]

    assert [r["values"]["status"] for r in data["rows"]] == ["OK", "NOT OK"]
    assert data["column_statistics"]["w1"]["count"] == 2
    assert len(data["row_statistics"]) == 2


def test_evaluate_table_rejects_bad_rows(client, weight_table_definition):
    response = post(client, "/evaluate-table", {"schema": weight_table_definition, "rows": [1]})
    assert response.status_code == 400


@pytest.mark.parametrize("sample_size", ["abc", None, -1, True, "3.5"])
def test_non_integer_sample_size_is_rejected(client, sample_size):
    classify = post(client, "/classify", {"values": [1], "tare1": 1, "tare2": 0, "sample_size": sample_size})
    inspect = post(client, "/inspect-weights", {"values": [1], "nominal_weight": 185, "sample_size": sample_size})

    assert classify.status_code == 400
    assert inspect.status_code == 400
    assert "sample_size" in classify.get_json()["message"]


def test_numeric_string_sample_size_is_accepted(client):
    response = post(client, "/classify", {"values": [185], "nominal_weight": 185, "sample_size": "20"})
    assert response.get_json()["data"]["bucket"] == 20


def test_complex_formula_result_serializes_as_null(client):
    schema = {"columns": [
        {"key": "a", "valueType": "number"},
        {"key": "root", "formula": "(cols.a - 10) ** 0.5", "decimals": 2},
    ]}
    response = post(client, "/evaluate-row", {"schema": schema, "row": {"a": 4}})

    assert response.status_code == 200
    assert response.get_json()["data"]["values"]["root"] is None
