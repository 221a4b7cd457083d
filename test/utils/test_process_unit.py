"""Unit tests for the process invoker."""

import os
import shlex
import sys
import time
from unittest.mock import patch

import pytest

from multi_ai_pipeline.models.invocation import InvocationOutcome
from multi_ai_pipeline.utils.process import (
    build_shell_command,
    escape_shell_arg,
    is_executable_available,
    requires_shell,
    spawn_process,
)

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX fake executables")


class TestEscapeShellArg:
    @pytest.mark.parametrize("arg", ["plain", "--print", "a,b,c", "path/to/file.json", "", "x=1"])
    def test_plain_arguments_pass_through(self, arg):
        assert escape_shell_arg(arg) == arg

    @pytest.mark.parametrize(
        "arg,expected",
        [
            ("two words", '"two words"'),
            ("tab\there", '"tab\there"'),
            ("a&b", '"a&b"'),
            ("a|b", '"a|b"'),
            ("a<b", '"a<b"'),
            ("a>b", '"a>b"'),
            ("a^b", '"a^b"'),
            ('say "hi"', '"say \\"hi\\""'),
        ],
    )
    def test_special_characters_are_quoted(self, arg, expected):
        assert escape_shell_arg(arg) == expected

    @pytest.mark.parametrize(
        "arg",
        ['say "hi"', 'Review "plan-refined.json" now', '"', 'a "b" & c | d', "multi\nline"],
    )
    def test_round_trips_through_posix_tokenizer(self, arg):
        assert shlex.split(escape_shell_arg(arg)) == [arg]

    def test_build_shell_command(self):
        command = build_shell_command("codex", ["exec", "--full-auto", "Review the plan"])

        assert command == 'codex exec --full-auto "Review the plan"'


class TestRequiresShell:
    def test_never_on_posix(self):
        assert requires_shell("claude", is_windows=False) is False

    @patch("multi_ai_pipeline.utils.process.shutil.which")
    def test_windows_cmd_shim(self, mock_which):
        mock_which.return_value = r"C:\Users\dev\AppData\Roaming\npm\codex.CMD"

        assert requires_shell("codex", is_windows=True) is True

    @patch("multi_ai_pipeline.utils.process.shutil.which")
    def test_windows_native_executable(self, mock_which):
        mock_which.return_value = r"C:\tools\claude.exe"

        assert requires_shell("claude", is_windows=True) is False


class TestSpawnProcess:
    def test_success_with_stdin(self):
        result = spawn_process(
            sys.executable,
            ["-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"],
            input_text="hello",
            timeout=30,
        )

        assert result.succeeded is True
        assert result.classification is InvocationOutcome.SUCCESS
        assert result.exit_code == 0
        assert result.stdout == "HELLO"

    def test_nonzero_exit_and_stderr_log(self, tmp_path):
        log = tmp_path / "logs" / "stderr.log"

        result = spawn_process(
            sys.executable,
            ["-c", "import sys; sys.stderr.write('Error: session expired'); sys.exit(4)"],
            timeout=30,
            stderr_path=log,
        )

        assert result.succeeded is False
        assert result.classification is InvocationOutcome.NONZERO_EXIT
        assert result.exit_code == 4
        assert result.stderr == "Error: session expired"
        assert log.read_text(encoding="utf-8") == "Error: session expired"

    def test_missing_executable(self):
        result = spawn_process("definitely-not-a-real-cli-7f3a", ["--version"], timeout=5)

        assert result.succeeded is False
        assert result.classification is InvocationOutcome.NOT_INSTALLED

    @patch("multi_ai_pipeline.utils.process.subprocess.Popen", side_effect=PermissionError("denied"))
    def test_other_spawn_error(self, _mock_popen):
        result = spawn_process("claude", ["--version"], timeout=5, use_shell=False)

        assert result.classification is InvocationOutcome.SPAWN_ERROR
        assert "denied" in result.message

    @pytest.mark.slow
    def test_timeout_kills_child(self):
        start = time.monotonic()

        result = spawn_process(sys.executable, ["-c", "import time; time.sleep(5)"], timeout=1)

        assert result.classification is InvocationOutcome.TIMEOUT
        assert result.succeeded is False
        # Reaped after kill, so a return code exists and we did not wait the full sleep
        assert result.exit_code is not None
        assert time.monotonic() - start < 4.5

    @posix_only
    @pytest.mark.slow
    def test_timeout_kills_fake_cli(self, tmp_path):
        fake = tmp_path / "slow-cli"
        fake.write_text("#!/bin/sh\nexec sleep 5\n", encoding="utf-8")
        fake.chmod(0o755)

        result = spawn_process(str(fake), [], timeout=1)

        assert result.classification is InvocationOutcome.TIMEOUT
        assert result.exit_code is not None and result.exit_code < 0

    @posix_only
    def test_shell_strategy_missing_command(self):
        result = spawn_process("definitely-not-a-real-cli-7f3a", ["--version"], timeout=10, use_shell=True)

        assert result.classification is InvocationOutcome.NOT_INSTALLED
        assert result.exit_code == 127

    @posix_only
    def test_shell_strategy_preserves_quoted_argument(self, tmp_path):
        result = spawn_process(
            sys.executable,
            ["-c", "import sys; print(sys.argv[1])", 'say "hi" & more'],
            timeout=30,
            use_shell=True,
        )

        assert result.succeeded is True
        assert result.stdout.strip() == 'say "hi" & more'


class TestIsExecutableAvailable:
    def test_python_is_available(self):
        assert is_executable_available(sys.executable) is True

    def test_missing_executable(self):
        assert is_executable_available("definitely-not-a-real-cli-7f3a") is False
