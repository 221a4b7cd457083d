"""Unit tests for the JSON state accessor."""

import json
import re
from unittest.mock import patch

import pytest

from multi_ai_pipeline.utils.json_state import (
    Assignment,
    AssignmentOp,
    FieldNotFoundError,
    StateFileMalformed,
    StateFileMissing,
    get_value,
    is_valid_json,
    merge_documents,
    parse_assignment,
    set_values,
    write_json_atomic,
)


def write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestGetValue:
    def test_nested_field(self, tmp_path):
        doc = write(tmp_path / "state.json", {"iterations": {"plan_review_sonnet": 3}})

        assert get_value(doc, "iterations.plan_review_sonnet") == 3

    def test_missing_segment_returns_default(self, tmp_path):
        doc = write(tmp_path / "state.json", {"iterations": {}})

        assert get_value(doc, "iterations.code_review_opus", 0) == 0
        assert get_value(doc, "nope.deeper", None) is None

    def test_missing_segment_without_default_raises(self, tmp_path):
        doc = write(tmp_path / "state.json", {"status": "idle"})

        with pytest.raises(FieldNotFoundError) as exc_info:
            get_value(doc, "iterations.plan_review_opus")

        assert exc_info.value.field_path == "iterations.plan_review_opus"

    def test_missing_file(self, tmp_path):
        with pytest.raises(StateFileMissing):
            get_value(tmp_path / "absent.json", "status")

    def test_malformed_file(self, tmp_path):
        doc = tmp_path / "state.json"
        doc.write_text("{not json", encoding="utf-8")

        with pytest.raises(StateFileMalformed):
            get_value(doc, "status")


class TestParseAssignment:
    @pytest.mark.parametrize(
        "expr,op,field,value",
        [
            ("status=in_progress", AssignmentOp.STRING, "status", "in_progress"),
            ("iterations.plan_review_sonnet:=4", AssignmentOp.LITERAL, "iterations.plan_review_sonnet", 4),
            ("flag:=true", AssignmentOp.LITERAL, "flag", True),
            ("previous_status:=null", AssignmentOp.LITERAL, "previous_status", None),
            ("updated_at@now", AssignmentOp.TIMESTAMP, "updated_at", None),
            ("iterations.implementation++", AssignmentOp.INCREMENT, "iterations.implementation", None),
            ("-previous_status", AssignmentOp.DELETE, "previous_status", None),
        ],
    )
    def test_syntax(self, expr, op, field, value):
        assignment = parse_assignment(expr)

        assert assignment.op is op
        assert assignment.field_path == field
        assert assignment.value == value

    def test_string_value_may_contain_equals(self):
        assert parse_assignment("summary=a=b").value == "a=b"

    @pytest.mark.parametrize(
        "expr,field,value",
        [
            ("note=C++", "note", "C++"),
            ("title=meet @now", "title", "meet @now"),
            ("owner=-someone", "owner", "-someone"),
        ],
    )
    def test_string_value_with_operator_suffix(self, expr, field, value):
        assignment = parse_assignment(expr)

        assert assignment.op is AssignmentOp.STRING
        assert assignment.field_path == field
        assert assignment.value == value

    def test_json_literal_may_contain_equals(self):
        assignment = parse_assignment('query:="a=b"')

        assert assignment.op is AssignmentOp.LITERAL
        assert assignment.field_path == "query"
        assert assignment.value == "a=b"

    def test_invalid_json_literal(self):
        with pytest.raises(ValueError, match="Invalid JSON literal"):
            parse_assignment("count:={oops")

    def test_no_operator(self):
        with pytest.raises(ValueError, match="Invalid assignment"):
            parse_assignment("status")


class TestSetValues:
    def test_all_assignment_kinds_in_one_write(self, tmp_path):
        doc = write(
            tmp_path / "state.json",
            {"status": "idle", "previous_status": "error", "iterations": {"plan_review_sonnet": 1}},
        )

        result = set_values(
            doc,
            [
                Assignment(AssignmentOp.STRING, "status", "in_progress"),
                Assignment(AssignmentOp.LITERAL, "meta.attempts", 2),
                Assignment(AssignmentOp.TIMESTAMP, "updated_at"),
                Assignment(AssignmentOp.INCREMENT, "iterations.plan_review_sonnet"),
                Assignment(AssignmentOp.DELETE, "previous_status"),
            ],
        )

        on_disk = json.loads(doc.read_text(encoding="utf-8"))
        assert on_disk == result
        assert on_disk["status"] == "in_progress"
        assert on_disk["meta"] == {"attempts": 2}
        assert on_disk["iterations"]["plan_review_sonnet"] == 2
        assert "previous_status" not in on_disk
        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$", on_disk["updated_at"])

    def test_increment_missing_field_counts_from_zero(self, tmp_path):
        doc = write(tmp_path / "state.json", {})

        set_values(doc, [Assignment(AssignmentOp.INCREMENT, "iterations.code_review_codex")])

        assert get_value(doc, "iterations.code_review_codex") == 1

    def test_increment_non_numeric_raises_and_leaves_file(self, tmp_path):
        doc = write(tmp_path / "state.json", {"status": "idle"})

        with pytest.raises(ValueError, match="non-numeric"):
            set_values(doc, [Assignment(AssignmentOp.INCREMENT, "status")])

        assert json.loads(doc.read_text(encoding="utf-8")) == {"status": "idle"}

    def test_delete_missing_path_is_noop(self, tmp_path):
        doc = write(tmp_path / "state.json", {"status": "idle"})

        set_values(doc, [Assignment(AssignmentOp.DELETE, "a.b.c")])

        assert json.loads(doc.read_text(encoding="utf-8")) == {"status": "idle"}

    def test_missing_file_requires_create(self, tmp_path):
        doc = tmp_path / "new.json"

        with pytest.raises(StateFileMissing):
            set_values(doc, [Assignment(AssignmentOp.STRING, "status", "idle")])

        set_values(doc, [Assignment(AssignmentOp.STRING, "status", "idle")], create=True)
        assert get_value(doc, "status") == "idle"

    def test_non_object_document(self, tmp_path):
        doc = tmp_path / "list.json"
        doc.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(StateFileMalformed):
            set_values(doc, [Assignment(AssignmentOp.STRING, "status", "idle")])


class TestAtomicWrite:
    def test_writer_killed_before_rename_keeps_old_document(self, tmp_path):
        doc = write(tmp_path / "state.json", {"status": "idle"})
        old = doc.read_text(encoding="utf-8")

        with patch("multi_ai_pipeline.utils.json_state.os.replace", side_effect=OSError("writer killed")):
            with pytest.raises(OSError, match="writer killed"):
                write_json_atomic(doc, {"status": "complete", "big": list(range(1000))})

        assert doc.read_text(encoding="utf-8") == old
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_creates_parent_directories(self, tmp_path):
        doc = tmp_path / ".task" / "errors" / "error.json"

        write_json_atomic(doc, {"ok": True})

        assert json.loads(doc.read_text(encoding="utf-8")) == {"ok": True}


class TestMergeDocuments:
    def test_later_documents_override_key_by_key(self, tmp_path):
        base = write(tmp_path / "base.json", {"claude": {"model": "sonnet", "timeout": 600}, "log_level": "INFO"})
        local = write(tmp_path / "local.json", {"claude": {"timeout": 900}})

        merged = merge_documents([base, local])

        assert merged == {"claude": {"model": "sonnet", "timeout": 900}, "log_level": "INFO"}

    def test_missing_documents_skipped_by_default(self, tmp_path):
        base = write(tmp_path / "base.json", {"a": 1})

        assert merge_documents([base, tmp_path / "absent.json"]) == {"a": 1}

        with pytest.raises(StateFileMissing):
            merge_documents([base, tmp_path / "absent.json"], skip_missing=False)


class TestIsValidJson:
    def test_valid_invalid_missing(self, tmp_path):
        good = write(tmp_path / "good.json", {"a": 1})
        bad = tmp_path / "bad.json"
        bad.write_text("{", encoding="utf-8")

        assert is_valid_json(good) is True
        assert is_valid_json(bad) is False
        assert is_valid_json(tmp_path / "missing.json") is False
