"""Provider type enumeration."""

from enum import Enum


class ProviderType(str, Enum):
    """External CLI agents the pipeline can invoke."""

    CLAUDE_CODE = "claude_code"
    CODEX = "codex"
