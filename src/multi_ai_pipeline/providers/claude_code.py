"""Claude Code CLI provider implementation."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from multi_ai_pipeline.constants import CLAUDE_STDERR_LOG, ERRORS_DIR, TASK_STATE_LISTING
from multi_ai_pipeline.errors import (
    AuthenticationRequired,
    InputValidationError,
    NonZeroExit,
    OutputValidationError,
)
from multi_ai_pipeline.models.artifact import DocumentKind
from multi_ai_pipeline.models.provider import ProviderType
from multi_ai_pipeline.providers.base import BaseProvider
from multi_ai_pipeline.services.session_service import FailureKind, classify_failure
from multi_ai_pipeline.services.validation_service import quarantine_output, validate_output
from multi_ai_pipeline.utils.json_state import utc_now
from multi_ai_pipeline.utils.process import spawn_process

logger = logging.getLogger(__name__)

# Agent files may declare their tools in YAML frontmatter:
# ---
# tools: Read,Grep
# ---
FRONTMATTER_PATTERN = r"^---\r?\n([\s\S]*?)\r?\n---"
FRONTMATTER_TOOLS_PATTERN = r"^tools:\s*(.+)$"

SECTION_SEPARATOR = "\n\n---\n\n"


def parse_frontmatter_tools(content: str) -> Optional[str]:
    """Return the ``tools:`` value from an agent file's frontmatter, if any."""
    match = re.match(FRONTMATTER_PATTERN, content)
    if not match:
        return None
    tools_match = re.search(FRONTMATTER_TOOLS_PATTERN, match.group(1), re.MULTILINE)
    if not tools_match:
        return None
    return tools_match.group(1).strip()


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return None


class ClaudeCodeProvider(BaseProvider):
    """Provider for Claude Code CLI tool integration (planner, implementer, reviewers)."""

    provider_type = ProviderType.CLAUDE_CODE
    install_hint = "Install from: https://claude.com/claude-code"

    @property
    def executable(self) -> str:
        return self.config.claude_executable

    def build_instructions(
        self,
        instructions: str,
        agent_file: Optional[Path] = None,
        output: Optional[Path] = None,
    ) -> tuple[str, Optional[str]]:
        """Assemble the full prompt sent on stdin.

        Sections, in order: agent file, project standards, current task state,
        output requirement, task instructions.

        Returns:
            (prompt text, tools declared in the agent file frontmatter or None)
        """
        parts: List[str] = []
        frontmatter_tools = None

        if agent_file is not None and agent_file.is_file():
            agent_content = _read_text(agent_file)
            if agent_content:
                parts.append(agent_content + SECTION_SEPARATOR)
                frontmatter_tools = parse_frontmatter_tools(agent_content)
        elif agent_file is not None:
            logger.warning(f"Agent file not found: {agent_file}")

        standards_path = self.config.standards_path
        if standards_path.is_file():
            standards = _read_text(standards_path)
            if standards:
                parts.append("# Project Standards\n\n" + standards + SECTION_SEPARATOR)

        state_lines = ["# Current Task State\n\n"]
        if self.task_dir.is_dir():
            for name in TASK_STATE_LISTING:
                if (self.task_dir / name).exists():
                    state_lines.append(f"- {name} exists\n")
        else:
            state_lines.append(f"- {self.config.task_dir} directory not found\n")
        parts.append("".join(state_lines) + "\n---\n\n")

        if output is not None:
            parts.append(
                "# Output Requirement\n\n"
                f"You MUST write your output to: {output}\n"
                "The file must be valid JSON." + SECTION_SEPARATOR
            )

        parts.append("# Task Instructions\n\n" + instructions + "\n")
        return "".join(parts), frontmatter_tools

    def build_command(self, model: str, allowed_tools: str) -> List[str]:
        # The prompt goes over stdin, never on the command line
        return ["--print", "--model", model, "--allowedTools", allowed_tools]

    def run(
        self,
        instructions: str,
        output: Optional[Path] = None,
        agent_file: Optional[Path] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        allowed_tools: Optional[str] = None,
        expected_kind: Optional[DocumentKind] = None,
        stage: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run Claude once and validate its output file.

        Returns:
            The ``complete`` event payload

        Raises:
            InputValidationError: No instructions given
            ExecutableNotInstalled: The CLI check failed
            InvocationTimeout, AuthenticationRequired, NonZeroExit: Execution failed
            OutputValidationError: The output file is missing or invalid
        """
        if not instructions or not instructions.strip():
            raise InputValidationError("Missing required --instructions argument", stage=stage)

        self.check_installed(stage=stage)

        model = model or self.config.claude_model
        timeout = timeout or self.config.claude_timeout
        full_instructions, frontmatter_tools = self.build_instructions(instructions, agent_file, output)
        # Explicit tools win, then the agent file's frontmatter, then the configured default
        tools = allowed_tools or frontmatter_tools or self.config.claude_allowed_tools

        self.emitter.emit(
            "start",
            agent=self.provider_type.value,
            stage=stage,
            model=model,
            allowedTools=tools,
            timeout_s=timeout,
            has_agent_file=agent_file is not None,
            has_output=output is not None,
            timestamp=utc_now(),
        )
        self.emitter.emit("invoking", agent=self.provider_type.value, model=model)
        logger.info(f"Invoking claude (model={model}, stage={stage}, timeout={timeout}s)")

        result = spawn_process(
            self.executable,
            self.build_command(model, tools),
            input_text=full_instructions,
            timeout=timeout,
            cwd=self.config.project_root,
            stderr_path=self.task_dir / CLAUDE_STDERR_LOG if self.task_dir.is_dir() else None,
        )

        if not result.succeeded:
            error = self.failure_for(result, timeout, stage=stage)
            if error is None:
                if classify_failure(result.stderr) is FailureKind.AUTH_REQUIRED:
                    error = AuthenticationRequired(
                        "Claude authentication required. Run: claude login", stage=stage
                    )
                else:
                    error = NonZeroExit(
                        f"claude exited with code {result.exit_code}",
                        stage=stage,
                        code=result.exit_code,
                        duration_ms=result.duration_ms,
                    )
            raise error

        document: Optional[Dict[str, Any]] = None
        if output is not None:
            try:
                document = validate_output(output, expected_kind, stage=stage)
            except OutputValidationError as e:
                e.details.setdefault("duration_ms", result.duration_ms)
                quarantine_output(output, self.task_dir / ERRORS_DIR)
                raise

        return self.emitter.emit(
            "complete",
            agent=self.provider_type.value,
            stage=stage,
            status="success",
            document_status=document.get("status") if document else None,
            output_file=str(output) if output is not None else None,
            output_valid=True,
            duration_ms=result.duration_ms,
        )
