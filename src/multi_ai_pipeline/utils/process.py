"""Process invoker for external CLI agents.

A single ``spawn_process`` interface hides the two platform strategies:

* direct: the argument vector is passed to the executable with no shell, so no
  argument is ever interpreted by a shell;
* shell: on Windows, npm-installed CLIs are ``.cmd``/``.bat`` shims that only run
  through the shell, so a single escaped command string is built instead.

Callers never branch on the OS name; ``requires_shell`` is the only capability check.
"""

import logging
import os
import re
import shutil
import subprocess
import time
from pathlib import Path
from typing import List, Optional, Sequence, Union

from multi_ai_pipeline.constants import VERSION_CHECK_TIMEOUT
from multi_ai_pipeline.models.invocation import InvocationOutcome, InvocationResult

logger = logging.getLogger(__name__)

# Whitespace or any of & | < > ^ " forces quoting under the shell strategy
SHELL_SPECIAL_PATTERN = re.compile(r'[\s"&|<>^]')
SHELL_SHIM_SUFFIXES = (".cmd", ".bat")


def escape_shell_arg(arg: str) -> str:
    """Quote an argument for the shell strategy.

    Arguments containing whitespace or any of ``& | < > ^ "`` are wrapped in double
    quotes with inner double quotes backslash-escaped. Others pass through unchanged.
    """
    if SHELL_SPECIAL_PATTERN.search(arg):
        return '"' + arg.replace('"', '\\"') + '"'
    return arg


def build_shell_command(executable: str, args: Sequence[str]) -> str:
    return " ".join([executable] + [escape_shell_arg(a) for a in args])


def requires_shell(executable: str, is_windows: Optional[bool] = None) -> bool:
    """Whether ``executable`` can only be started through the shell on this host."""
    if is_windows is None:
        is_windows = os.name == "nt"
    if not is_windows:
        return False
    resolved = shutil.which(executable) or executable
    return resolved.lower().endswith(SHELL_SHIM_SUFFIXES)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def spawn_process(
    executable: str,
    args: Sequence[str],
    input_text: Optional[str] = None,
    timeout: float = 600,
    use_shell: Optional[bool] = None,
    cwd: Optional[Union[str, Path]] = None,
    stderr_path: Optional[Union[str, Path]] = None,
) -> InvocationResult:
    """Run an external executable once and classify the outcome.

    Args:
        executable: Command name or path
        args: Argument list
        input_text: Written to the child's stdin, which is then closed
        timeout: Seconds before the child is forcibly killed
        use_shell: Force a strategy; None selects it with requires_shell()
        cwd: Working directory for the child
        stderr_path: If given, captured stderr is written to this file

    Returns:
        InvocationResult classified as success, nonzero_exit, timeout,
        not_installed or spawn_error
    """
    if use_shell is None:
        use_shell = requires_shell(executable)

    command: Union[str, List[str]]
    if use_shell:
        command = build_shell_command(executable, args)
    else:
        command = [executable] + list(args)

    logger.debug(f"Spawning {executable} (shell={use_shell}, timeout={timeout}s)")
    start = time.monotonic()

    try:
        proc = subprocess.Popen(
            command,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            shell=use_shell,
            cwd=cwd,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as e:
        logger.warning(f"Executable not found: {executable}")
        return InvocationResult(
            succeeded=False,
            classification=InvocationOutcome.NOT_INSTALLED,
            duration_ms=_elapsed_ms(start),
            message=str(e),
        )
    except OSError as e:
        logger.error(f"Failed to spawn {executable}: {e}")
        return InvocationResult(
            succeeded=False,
            classification=InvocationOutcome.SPAWN_ERROR,
            duration_ms=_elapsed_ms(start),
            message=str(e),
        )

    timed_out = False
    try:
        stdout, stderr = proc.communicate(input=input_text, timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        proc.kill()
        stdout, stderr = proc.communicate()

    duration_ms = _elapsed_ms(start)
    stdout = stdout or ""
    stderr = stderr or ""

    if stderr_path is not None:
        try:
            Path(stderr_path).parent.mkdir(parents=True, exist_ok=True)
            Path(stderr_path).write_text(stderr, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not write stderr log {stderr_path}: {e}")

    if timed_out:
        logger.warning(f"{executable} timed out after {timeout}s, killed pid {proc.pid}")
        return InvocationResult(
            succeeded=False,
            classification=InvocationOutcome.TIMEOUT,
            exit_code=proc.returncode,
            duration_ms=duration_ms,
            stdout=stdout,
            stderr=stderr,
            message=f"Timed out after {timeout} seconds",
        )

    if proc.returncode == 0:
        return InvocationResult(
            succeeded=True,
            classification=InvocationOutcome.SUCCESS,
            exit_code=0,
            duration_ms=duration_ms,
            stdout=stdout,
            stderr=stderr,
        )

    # With the shell strategy a missing command surfaces as a shell exit code
    classification = InvocationOutcome.NONZERO_EXIT
    if use_shell and proc.returncode in (9009, 127):
        classification = InvocationOutcome.NOT_INSTALLED

    return InvocationResult(
        succeeded=False,
        classification=classification,
        exit_code=proc.returncode,
        duration_ms=duration_ms,
        stdout=stdout,
        stderr=stderr,
        message=f"{executable} exited with code {proc.returncode}",
    )


def is_executable_available(
    executable: str, version_flag: str = "--version", timeout: float = VERSION_CHECK_TIMEOUT
) -> bool:
    """Probe ``executable --version``; True only if it runs and exits 0."""
    result = spawn_process(executable, [version_flag], timeout=timeout)
    return result.succeeded
