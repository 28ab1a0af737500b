import pytest

from qcengine.utils.relaxed_json import clean_relaxed_json, parse_relaxed_json


def test_strict_json_passes_through():
    assert parse_relaxed_json('{"a": 1}') == {"a": 1}


def test_dicts_are_returned_untouched():
    data = {"columns": []}
    assert parse_relaxed_json(data) is data


def test_code_fence_and_trailing_commas():
    text = '```json\n{"columns": [{"key": "a", "label": "A",},],}\n```'
    assert parse_relaxed_json(text) == {"columns": [{"key": "a", "label": "A"}]}


def test_bare_keys_and_smart_quotes():
    text = "{name: “Weights”, rows: 3}"
    assert parse_relaxed_json(text) == {"name": "Weights", "rows": 3}


def test_wrapping_parentheses_and_markdown_escapes():
    text = '({"is\\_time\\_series": true, "choices": \\["a"\\]})'
    assert parse_relaxed_json(text) == {"is_time_series": True, "choices": ["a"]}


def test_clean_leaves_valid_json_unchanged():
    text = '{"a": [1, 2]}'
    assert clean_relaxed_json(text) == text


@pytest.mark.parametrize("text", ["", "   ", "{not json at all", "[1, 2"])
def test_invalid_text_raises_value_error(text):
    with pytest.raises(ValueError):
        parse_relaxed_json(text)


def test_string_contents_are_not_rewritten():
    text = '{label: "Weight, net: g", note: "a,}", "x": [1,],}'
    assert parse_relaxed_json(text) == {"label": "Weight, net: g", "note": "a,}", "x": [1]}


def test_escaped_quotes_inside_strings():
    text = '{label: "say \\"hi, there: now\\"",}'
    assert parse_relaxed_json(text) == {"label": 'say "hi, there: now"'}
