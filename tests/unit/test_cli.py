"""Tests for the groundex command line."""
import json

import pytest
from click.testing import CliRunner

from groundex.cli import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def source_file(tmp_path, sample_text):
    path = tmp_path / "doc.txt"
    path.write_text(sample_text, encoding="utf-8")
    return path


class TestAlign:
    def test_json_output(self, runner, source_file):
        result = runner.invoke(main, ["align", str(source_file), "Google Inc.", "john smith", "--json"])
        assert result.exit_code == 0, result.output
        rows = json.loads(result.output)
        assert rows[0]["status"] == "exact"
        assert (rows[0]["start"], rows[0]["end"]) == (20, 31)
        assert rows[1]["status"] == "fuzzy_case"
        assert rows[1]["aligned_text"] == "John Smith"

    def test_table_output(self, runner, source_file):
        result = runner.invoke(main, ["align", str(source_file), "Mountain View"])
        assert result.exit_code == 0
        assert "exact" in result.output
        assert "[35:48)" in result.output

    def test_unaligned_exits_one(self, runner, source_file):
        result = runner.invoke(main, ["align", str(source_file), "zebra xylophone quartz", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output)[0]["status"] == "none"

    def test_case_sensitive_flag(self, runner, source_file):
        result = runner.invoke(
            main, ["align", str(source_file), "john smith", "--case-sensitive", "--max-distance", "0", "--json"]
        )
        assert result.exit_code == 1

    def test_invalid_options_exit_two(self, runner, source_file):
        result = runner.invoke(main, ["align", str(source_file), "Google", "--min-confidence", "3"])
        assert result.exit_code == 2
        assert "min_confidence" in result.output

    def test_log_file(self, runner, source_file, tmp_path):
        log_file = tmp_path / "run.log"
        result = runner.invoke(main, ["--log-file", str(log_file), "align", str(source_file), "Google Inc."])
        assert result.exit_code == 0
        assert log_file.exists()


class TestSchema:
    def test_lists_classes(self, runner, tmp_path):
        path = tmp_path / "schema.json"
        path.write_text(json.dumps({
            "name": "contacts",
            "classes": [{"name": "person", "fields": [{"name": "role", "type": "string", "required": True}]}],
        }))
        result = runner.invoke(main, ["schema", str(path), "--json-schema"])
        assert result.exit_code == 0, result.output
        assert "Schema: contacts" in result.output
        assert "person (role:string*)" in result.output
        assert '"extraction_class"' in result.output

    def test_invalid_schema(self, runner, tmp_path):
        path = tmp_path / "schema.json"
        path.write_text('{"classes": "nope"}')
        result = runner.invoke(main, ["schema", str(path)])
        assert result.exit_code == 1
        assert "Invalid schema" in result.output


def test_presets(runner):
    result = runner.invoke(main, ["presets"])
    assert result.exit_code == 0
    assert [line.split()[0] for line in result.output.splitlines()] == ["default", "thorough", "strict"]
