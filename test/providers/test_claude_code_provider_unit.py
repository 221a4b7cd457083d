"""Unit tests for the Claude Code provider."""

import json
from unittest.mock import patch

import pytest

from multi_ai_pipeline.config import PipelineConfig
from multi_ai_pipeline.errors import (
    AuthenticationRequired,
    ExecutableNotInstalled,
    InputValidationError,
    InvocationTimeout,
    NonZeroExit,
    OutputMissingField,
)
from multi_ai_pipeline.models.artifact import DocumentKind
from multi_ai_pipeline.models.invocation import InvocationOutcome, InvocationResult
from multi_ai_pipeline.providers.claude_code import ClaudeCodeProvider, parse_frontmatter_tools
from multi_ai_pipeline.utils.events import NullEmitter


def ok_result(**kwargs):
    return InvocationResult(succeeded=True, classification=InvocationOutcome.SUCCESS, exit_code=0, duration_ms=12, **kwargs)


def failed_result(classification, exit_code=1, stderr=""):
    return InvocationResult(
        succeeded=False, classification=classification, exit_code=exit_code, duration_ms=5, stderr=stderr
    )


@pytest.fixture
def config(tmp_path):
    config = PipelineConfig(project_root=tmp_path)
    config.task_path.mkdir()
    return config


@pytest.fixture
def provider(config):
    return ClaudeCodeProvider(config, NullEmitter())


class TestFrontmatterTools:
    def test_tools_line(self):
        content = "---\nname: reviewer\ntools: Read, Grep, Glob\n---\n# Reviewer\n"

        assert parse_frontmatter_tools(content) == "Read, Grep, Glob"

    def test_no_frontmatter(self):
        assert parse_frontmatter_tools("# Implementer\ntools: Bash\n") is None

    def test_frontmatter_without_tools(self):
        assert parse_frontmatter_tools("---\nname: planner\n---\nbody") is None


class TestBuildInstructions:
    def test_sections_in_order(self, provider, config, tmp_path):
        agent = tmp_path / "planner.md"
        agent.write_text("---\ntools: Read,Write\n---\nYou are the planner.", encoding="utf-8")
        config.standards_path.parent.mkdir(parents=True)
        config.standards_path.write_text("Use type hints.", encoding="utf-8")
        (config.task_path / "user-story.json").write_text("{}", encoding="utf-8")
        output = config.task_path / "plan-refined.json"

        text, tools = provider.build_instructions("Create the plan.", agent, output)

        assert tools == "Read,Write"
        positions = [
            text.index("You are the planner."),
            text.index("# Project Standards"),
            text.index("# Current Task State"),
            text.index("# Output Requirement"),
            text.index("# Task Instructions"),
        ]
        assert positions == sorted(positions)
        assert "- user-story.json exists" in text
        assert "- plan-refined.json exists" not in text
        assert f"You MUST write your output to: {output}" in text
        assert text.rstrip().endswith("Create the plan.")

    def test_missing_agent_file_and_standards_are_skipped(self, provider, tmp_path):
        text, tools = provider.build_instructions("Do it.", tmp_path / "absent.md", None)

        assert tools is None
        assert "# Project Standards" not in text
        assert "# Output Requirement" not in text


class TestRun:
    def test_missing_instructions(self, provider):
        with pytest.raises(InputValidationError) as exc_info:
            provider.run("   ")

        assert exc_info.value.phase == "input_validation"
        assert exc_info.value.exit_code == 1

    @patch("multi_ai_pipeline.providers.base.is_executable_available", return_value=False)
    def test_cli_check_failure(self, _mock_available, provider):
        with pytest.raises(ExecutableNotInstalled) as exc_info:
            provider.run("Gather requirements", stage="requirements")

        assert exc_info.value.phase == "cli_check"
        assert exc_info.value.exit_code == 2
        assert exc_info.value.stage == "requirements"
        assert provider.emitter.history == []

    @patch("multi_ai_pipeline.providers.claude_code.spawn_process")
    @patch("multi_ai_pipeline.providers.base.is_executable_available", return_value=True)
    def test_success_validates_output(self, _mock_available, mock_spawn, provider, config):
        output = config.task_path / "review-sonnet.json"

        def spawn(executable, args, input_text=None, **kwargs):
            output.write_text(json.dumps({"status": "approved", "summary": "ok"}), encoding="utf-8")
            return ok_result()

        mock_spawn.side_effect = spawn

        event = provider.run(
            "Review the plan", output=output, model="opus", expected_kind=DocumentKind.REVIEW
        )

        assert event["event"] == "complete"
        assert event["document_status"] == "approved"
        assert event["output_valid"] is True
        args = mock_spawn.call_args.args
        assert args[0] == "claude"
        assert args[1] == ["--print", "--model", "opus", "--allowedTools", config.claude_allowed_tools]
        assert "Review the plan" in mock_spawn.call_args.kwargs["input_text"]
        assert [e["event"] for e in provider.emitter.history] == ["start", "invoking", "complete"]

    @patch("multi_ai_pipeline.providers.claude_code.spawn_process")
    @patch("multi_ai_pipeline.providers.base.is_executable_available", return_value=True)
    def test_tool_precedence(self, _mock_available, mock_spawn, provider, tmp_path):
        agent = tmp_path / "reviewer.md"
        agent.write_text("---\ntools: Read,Grep\n---\nReview.", encoding="utf-8")
        mock_spawn.return_value = ok_result()

        provider.run("Review", agent_file=agent)
        assert mock_spawn.call_args.args[1][-1] == "Read,Grep"

        provider.run("Review", agent_file=agent, allowed_tools="Read")
        assert mock_spawn.call_args.args[1][-1] == "Read"

    @patch("multi_ai_pipeline.providers.claude_code.spawn_process")
    @patch("multi_ai_pipeline.providers.base.is_executable_available", return_value=True)
    def test_timeout(self, _mock_available, mock_spawn, provider):
        mock_spawn.return_value = failed_result(InvocationOutcome.TIMEOUT, exit_code=-9)

        with pytest.raises(InvocationTimeout) as exc_info:
            provider.run("Implement", timeout=1)

        assert exc_info.value.exit_code == 3
        assert exc_info.value.to_event()["error"] == "timeout"

    @patch("multi_ai_pipeline.providers.claude_code.spawn_process")
    @patch("multi_ai_pipeline.providers.base.is_executable_available", return_value=True)
    def test_auth_failure(self, _mock_available, mock_spawn, provider):
        mock_spawn.return_value = failed_result(
            InvocationOutcome.NONZERO_EXIT, stderr="Invalid API key. Please run /login to authenticate."
        )

        with pytest.raises(AuthenticationRequired) as exc_info:
            provider.run("Implement")

        assert exc_info.value.exit_code == 2

    @patch("multi_ai_pipeline.providers.claude_code.spawn_process")
    @patch("multi_ai_pipeline.providers.base.is_executable_available", return_value=True)
    def test_nonzero_exit(self, _mock_available, mock_spawn, provider):
        mock_spawn.return_value = failed_result(InvocationOutcome.NONZERO_EXIT, exit_code=7, stderr="boom")

        with pytest.raises(NonZeroExit) as exc_info:
            provider.run("Implement")

        assert exc_info.value.exit_code == 1
        assert exc_info.value.details["code"] == 7

    @patch("multi_ai_pipeline.providers.claude_code.spawn_process")
    @patch("multi_ai_pipeline.providers.base.is_executable_available", return_value=True)
    def test_invalid_output_is_quarantined(self, _mock_available, mock_spawn, provider, config):
        output = config.task_path / "review-opus.json"

        def spawn(*args, **kwargs):
            output.write_text(json.dumps({"status": "approved"}), encoding="utf-8")
            return ok_result()

        mock_spawn.side_effect = spawn

        with pytest.raises(OutputMissingField):
            provider.run("Review", output=output, expected_kind=DocumentKind.REVIEW)

        assert not output.exists()
        assert len(list((config.task_path / "errors").glob("review-opus-*.rejected.json"))) == 1
