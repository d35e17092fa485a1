from review_source.core.response_parser import (
    PARSE_ERROR_MESSAGE,
    issues_to_wire,
    parse_review_response,
)
from review_source.models.review import Issue, IssueType


def test_parses_violations_object():
    result = parse_review_response(
        '{"violations":[{"line":3,"type":"Critical","object":"x",'
        '"violated_rule":"r","suggested_change":"s"}]}'
    )
    assert result.error is None
    assert result.issues == [
        Issue(line=3, object="x", type=IssueType.CRITICAL, violated_rule="r", suggested_change="s")
    ]


def test_invalid_json_reports_error_consistently():
    first = parse_review_response("not json")
    second = parse_review_response("not json")

    assert first.issues == []
    assert first.error == PARSE_ERROR_MESSAGE
    assert first == second


def test_json_wrapped_in_prose_and_fences():
    raw = 'Here you go:\n```json\n[{"line": 2, "type": "Warning", "object": "y"}]\n```\nThanks'
    result = parse_review_response(raw)
    assert [(i.line, i.object, i.type) for i in result.issues] == [(2, "y", IssueType.WARNING)]


def test_fallback_field_names_and_defaults():
    result = parse_review_response(
        '{"issues":[{"line":4,"position":"conn","rule":"Close it","suggestion":"conn.Close()",'
        '"type":"critical"},{"line":5}]}'
    )
    first, second = result.issues
    assert first.object == "conn"
    assert first.violated_rule == "Close it"
    assert first.suggested_change == "conn.Close()"
    # only the exact "Critical" string is critical
    assert first.type == IssueType.WARNING
    assert second.violated_rule == "Unknown"
    assert second.object == ""
    assert second.suggested_change == ""


def test_elements_without_usable_line_are_dropped():
    result = parse_review_response(
        '{"violations":[{"object":"a"},{"line":"3"},{"line":0},{"line":true},'
        '{"line":2.5},"text",{"line":6.0,"object":"b"}]}'
    )
    assert result.error is None
    assert [(i.line, i.object) for i in result.issues] == [(6, "b")]


def test_object_without_known_fields_gives_no_issues():
    assert parse_review_response('{"result": "ok"}').issues == []
    assert parse_review_response('{"violations": {"line": 1}}').issues == []


def test_issues_to_wire_uses_snake_case_schema():
    wire = issues_to_wire([Issue(line=1, object="x", type=IssueType.CRITICAL, violated_rule="r")])
    assert wire == [{
        "line": 1,
        "object": "x",
        "type": "Critical",
        "violated_rule": "r",
        "suggested_change": "",
    }]


def test_empty_violations_list_wins_over_issues():
    result = parse_review_response(
        '{"violations": [], "issues": [{"line": 2, "type": "Critical"}]}'
    )
    assert result.error is None
    assert result.issues == []

    # null or missing violations falls back to issues
    fallback = parse_review_response(
        '{"violations": null, "issues": [{"line": 2, "type": "Critical"}]}'
    )
    assert [(i.line, i.type) for i in fallback.issues] == [(2, IssueType.CRITICAL)]


def test_bare_scalar_gives_no_issues():
    for raw in ("5", "true", '"looks fine"'):
        result = parse_review_response(raw)
        assert result.error is None
        assert result.issues == []

    assert parse_review_response("null").error == PARSE_ERROR_MESSAGE
