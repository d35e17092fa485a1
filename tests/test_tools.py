import json

import pytest

from review_source.core.source_loader import file_extension, read_folder, read_source
from review_source.models.review import LanguageRuleSet
from review_source.tools.benchmark_cli import load_dataset, parse_model
from review_source.tools.rule_converter import convert_rules_to_json, load_rule_set

from conftest import ROOT, VB_RULES


def test_convert_rules_to_json(tmp_path):
    source = tmp_path / "vb.md"
    source.write_text(VB_RULES, encoding="utf-8")

    output = convert_rules_to_json(str(source), str(tmp_path / "out" / "vb-rules.json"))

    data = json.loads((tmp_path / "out" / "vb-rules.json").read_text(encoding="utf-8"))
    assert output.endswith("vb-rules.json")
    assert data["language"] == "vb"
    assert data["critical_rules"] == [
        {"no": 1, "description": "GoTo makes control flow hard to follow", "target": "GoTo statements"}
    ]


def test_load_rule_set_from_json_and_markdown(tmp_path):
    source = tmp_path / "vb.md"
    source.write_text(VB_RULES, encoding="utf-8")
    converted = convert_rules_to_json(str(source))

    from_json = load_rule_set(converted, language="VB6")
    from_markdown = load_rule_set(str(source))

    assert isinstance(from_json, LanguageRuleSet)
    assert from_json.language == "VB6"
    assert from_json.critical_rules == from_markdown.critical_rules
    assert from_markdown.language == "vb"


def test_parse_model():
    assert parse_model("qwen3:8b").think is False
    assert parse_model("qwen3:8b@on").think is True
    assert parse_model("gpt-oss:20b@High").think == "high"
    assert parse_model("gpt-oss:20b@high").mode_name == "high"

    with pytest.raises(ValueError):
        parse_model("qwen3:8b@maybe")


def test_sample_data_loads():
    dataset = load_dataset(str(ROOT / "TestData" / "datasets" / "vb-dataset.json"))
    rule_set = load_rule_set(str(ROOT / "TestData" / "rules" / "vb.md"), dataset.language)

    assert dataset.language == "vb"
    assert dataset.test_cases
    assert rule_set.critical_rules and rule_set.warning_rules
    for case in dataset.test_cases:
        lines = case.source_code.split("\n")
        for violation in case.expected_violations:
            assert 1 <= violation.line <= len(lines)
            assert violation.object in lines[violation.line - 1]


def test_read_folder(tmp_path):
    (tmp_path / "b.sql").write_text("SELECT 1", encoding="utf-8")
    (tmp_path / "a.vb").write_bytes(b"Dim x \xff")
    (tmp_path / "nested").mkdir()

    files = read_folder(str(tmp_path))

    assert [file_extension(path) for path, _ in files] == ["vb", "sql"]
    assert files[0][1] == "Dim x �"

    with pytest.raises(NotADirectoryError):
        read_folder(str(tmp_path / "b.sql"))


def test_read_source_and_extension(tmp_path):
    path = tmp_path / "Query.SQL"
    path.write_text("SELECT 1", encoding="utf-8")

    assert read_source(str(path)) == (str(path), "SELECT 1")
    assert file_extension(str(path)) == "sql"
    assert file_extension("Makefile") == ""
