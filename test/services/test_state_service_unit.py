"""Unit tests for the pipeline state document and error records."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from multi_ai_pipeline.errors import ExecutableNotInstalled, IterationCapExceeded
from multi_ai_pipeline.models.pipeline import PipelineStatus
from multi_ai_pipeline.services.state_service import PipelineStateStore, record_error
from multi_ai_pipeline.utils.json_state import StateFileMalformed


@pytest.fixture
def store(tmp_path):
    return PipelineStateStore(tmp_path / ".task")


class TestInit:
    def test_fresh_document(self, store):
        state = store.init()

        on_disk = json.loads(store.path.read_text(encoding="utf-8"))
        assert on_disk["status"] == "idle"
        assert on_disk["pipeline_id"] == state.pipeline_id
        assert state.pipeline_id.startswith("pipeline-")
        assert on_disk["iterations"] == {
            "plan_review_sonnet": 0,
            "plan_review_opus": 0,
            "plan_review_codex": 0,
            "code_review_sonnet": 0,
            "code_review_opus": 0,
            "code_review_codex": 0,
            "implementation": 0,
        }
        assert on_disk["started_at"] == on_disk["updated_at"]
        assert "previous_status" not in on_disk

    def test_existing_document_kept_unless_reset(self, store):
        first = store.init()
        store.increment("plan_review_opus")

        again = store.init()
        assert again.pipeline_id == first.pipeline_id
        assert again.iteration("plan_review_opus") == 1

        fresh = store.init(reset=True)
        assert fresh.iteration("plan_review_opus") == 0

    def test_load_creates_missing_document(self, store):
        assert not store.exists()

        state = store.load()

        assert store.exists()
        assert state.status is PipelineStatus.IDLE

    def test_load_rejects_unknown_status(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text(json.dumps({"status": "debating"}), encoding="utf-8")

        with pytest.raises(StateFileMalformed):
            store.load()


class TestCounters:
    def test_increment_is_per_stage(self, store):
        store.init()

        assert store.increment("code_review_codex") == 1
        assert store.increment("code_review_codex") == 2
        assert store.load().iteration("code_review_sonnet") == 0


class TestStatus:
    def test_previous_status_recorded_on_error(self, store):
        store.init()
        store.set_status(PipelineStatus.IN_PROGRESS)

        state = store.set_status(PipelineStatus.ERROR)

        assert state.status is PipelineStatus.ERROR
        assert state.previous_status is PipelineStatus.IN_PROGRESS

    def test_previous_status_preserved_when_already_in_status(self, store):
        store.init()
        store.set_status(PipelineStatus.IN_PROGRESS)
        store.set_status(PipelineStatus.NEEDS_USER_INPUT)

        state = store.set_status(PipelineStatus.NEEDS_USER_INPUT)

        assert state.previous_status is PipelineStatus.IN_PROGRESS

    def test_previous_status_cleared_on_recovery(self, store):
        store.init()
        store.set_status(PipelineStatus.ERROR)

        state = store.set_status(PipelineStatus.IN_PROGRESS)

        assert state.previous_status is None
        assert "previous_status" not in json.loads(store.path.read_text(encoding="utf-8"))


class TestIsStuck:
    def test_recent_update_is_not_stuck(self, store):
        store.init()

        assert store.is_stuck(600) is False

    def test_old_update_is_stuck(self, store):
        store.init()
        later = datetime.now(timezone.utc) + timedelta(seconds=601)

        assert store.is_stuck(600, now=later) is True


class TestRecordError:
    def test_error_record_with_state_snapshot(self, store):
        store.init()
        store.increment("plan_review_sonnet")
        state = store.load()

        error_file = record_error(store.task_dir, IterationCapExceeded("plan_review_sonnet", 10, 10), state)

        record = json.loads(error_file.read_text(encoding="utf-8"))
        assert error_file.parent == store.task_dir / "errors"
        assert error_file.name.startswith("error-")
        assert record["stage"] == "plan_review_sonnet"
        assert record["phase"] == "escalation"
        assert record["error"]["type"] == "iteration_cap_exceeded"
        assert record["iteration"] == 1
        assert record["context"]["current_state"]["pipeline_id"] == state.pipeline_id

    def test_error_record_without_state(self, tmp_path):
        error_file = record_error(tmp_path, ExecutableNotInstalled("claude CLI not installed"))

        record = json.loads(error_file.read_text(encoding="utf-8"))
        assert record["phase"] == "cli_check"
        assert record["error"]["exit_code"] == 2
        assert "context" not in record

    def test_records_do_not_overwrite_each_other(self, tmp_path):
        first = record_error(tmp_path, ExecutableNotInstalled("one"))
        second = record_error(tmp_path, ExecutableNotInstalled("two"))

        assert first != second
