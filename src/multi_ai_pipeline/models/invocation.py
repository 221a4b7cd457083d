"""Process invocation result models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class InvocationOutcome(str, Enum):
    """Classification of a single child process run."""

    SUCCESS = "success"
    NONZERO_EXIT = "nonzero_exit"
    TIMEOUT = "timeout"
    NOT_INSTALLED = "not_installed"
    SPAWN_ERROR = "spawn_error"


class InvocationResult(BaseModel):
    """Result record returned by the process invoker."""

    succeeded: bool
    classification: InvocationOutcome
    exit_code: Optional[int] = None
    duration_ms: int
    stdout: str = ""
    stderr: str = ""
    message: Optional[str] = None
