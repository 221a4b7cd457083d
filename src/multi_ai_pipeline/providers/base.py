"""Base provider shared by the Claude Code and Codex wrappers."""

import logging
import sys
from abc import ABC
from pathlib import Path
from typing import Optional

from multi_ai_pipeline.config import PipelineConfig
from multi_ai_pipeline.errors import ExecutableNotInstalled, InvocationTimeout, PipelineError
from multi_ai_pipeline.models.invocation import InvocationOutcome, InvocationResult
from multi_ai_pipeline.models.provider import ProviderType
from multi_ai_pipeline.utils.events import EventEmitter
from multi_ai_pipeline.utils.process import is_executable_available

logger = logging.getLogger(__name__)


def get_platform() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


class BaseProvider(ABC):
    """Common plumbing: config, event stream and failure mapping."""

    provider_type: ProviderType
    install_hint: str = ""

    def __init__(self, config: PipelineConfig, emitter: Optional[EventEmitter] = None):
        self.config = config
        self.emitter = emitter or EventEmitter()

    @property
    def executable(self) -> str:
        raise NotImplementedError

    @property
    def task_dir(self) -> Path:
        return self.config.task_path

    def check_installed(self, stage: Optional[str] = None) -> None:
        """Raise ExecutableNotInstalled (phase cli_check) if the CLI does not answer --version."""
        if not is_executable_available(self.executable):
            logger.error(f"{self.executable} is not installed or not on PATH")
            raise ExecutableNotInstalled(
                f"{self.executable} CLI not installed. {self.install_hint}".strip(),
                stage=stage,
            )

    def failure_for(
        self, result: InvocationResult, timeout: int, stage: Optional[str] = None
    ) -> Optional[PipelineError]:
        """Map spawn-level and timeout outcomes to errors; None for a plain nonzero exit."""
        if result.classification is InvocationOutcome.TIMEOUT:
            return InvocationTimeout(
                f"{self.executable} timed out after {timeout} seconds",
                stage=stage,
                duration_ms=result.duration_ms,
            )
        if result.classification is InvocationOutcome.NOT_INSTALLED:
            return ExecutableNotInstalled(
                f"{self.executable} CLI not installed. {self.install_hint}".strip(),
                stage=stage,
                phase="execution",
            )
        if result.classification is InvocationOutcome.SPAWN_ERROR:
            return PipelineError(
                f"Failed to start {self.executable}: {result.message}",
                stage=stage,
                spawn_error=True,
            )
        return None
