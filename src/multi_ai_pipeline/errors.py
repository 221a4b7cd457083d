"""Error taxonomy for the pipeline.

Every failure that can reach the orchestration loop is a ``PipelineError``
carrying the stage and phase it occurred in and the exit code the wrapper
commands report for it. ``to_event`` renders the structured error event that
is printed as the last line of a failed invocation.
"""

from typing import Any, Dict, Optional

from multi_ai_pipeline.constants import EXIT_CLI_ERROR, EXIT_TIMEOUT, EXIT_VALIDATION_ERROR

PHASE_CLI_CHECK = "cli_check"
PHASE_INPUT_VALIDATION = "input_validation"
PHASE_EXECUTION = "execution"
PHASE_OUTPUT_VALIDATION = "output_validation"
PHASE_ESCALATION = "escalation"


class PipelineError(Exception):
    """Base class for failures surfaced to the orchestration loop."""

    error_type = "pipeline_error"
    default_phase = PHASE_EXECUTION
    default_exit_code = EXIT_VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        phase: Optional[str] = None,
        exit_code: Optional[int] = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.phase = phase or self.default_phase
        self.exit_code = self.default_exit_code if exit_code is None else exit_code
        self.details = details

    def to_event(self) -> Dict[str, Any]:
        event: Dict[str, Any] = {
            "event": "error",
            "phase": self.phase,
            "error": self.error_type,
            "message": self.message,
        }
        if self.stage:
            event["stage"] = self.stage
        event.update(self.details)
        return event


class ConfigError(PipelineError):
    """Invalid pipeline configuration."""

    error_type = "config_error"
    default_phase = PHASE_INPUT_VALIDATION


class InputValidationError(PipelineError):
    """A required input (argument or upstream artifact) is missing before invocation."""

    error_type = "input_validation"
    default_phase = PHASE_INPUT_VALIDATION


class ExecutableNotInstalled(PipelineError):
    error_type = "not_installed"
    default_phase = PHASE_CLI_CHECK
    default_exit_code = EXIT_CLI_ERROR


class AuthenticationRequired(PipelineError):
    error_type = "auth_required"
    default_exit_code = EXIT_CLI_ERROR


class InvocationTimeout(PipelineError):
    error_type = "timeout"
    default_exit_code = EXIT_TIMEOUT


class NonZeroExit(PipelineError):
    error_type = "nonzero_exit"


class SessionExpired(PipelineError):
    """Resume failed because the reviewer session expired and the fresh retry failed too."""

    error_type = "session_expired"
    default_exit_code = EXIT_CLI_ERROR


class OutputValidationError(PipelineError):
    """Base class for an agent output that cannot be trusted."""

    error_type = "output_invalid"
    default_phase = PHASE_OUTPUT_VALIDATION


class OutputMissing(OutputValidationError):
    error_type = "output_missing"


class OutputUnreadable(OutputValidationError):
    error_type = "output_unreadable"


class OutputNotJson(OutputValidationError):
    error_type = "output_not_json"


class OutputMissingField(OutputValidationError):
    error_type = "output_missing_field"

    def __init__(self, field: str, **kwargs: Any):
        message = kwargs.pop("message", None) or f'Output missing "{field}" field'
        super().__init__(message, field=field, **kwargs)
        self.field = field


class OutputInvalidEnumValue(OutputValidationError):
    error_type = "output_invalid_status"

    def __init__(self, value: Any, allowed: list, **kwargs: Any):
        message = f'Invalid status "{value}". Must be one of: {", ".join(allowed)}'
        super().__init__(message, value=value, allowed=list(allowed), **kwargs)
        self.value = value


class EscalationRequired(PipelineError):
    """Automatic progression stops here; a human has to decide."""

    error_type = "escalation_required"
    default_phase = PHASE_ESCALATION


class IterationCapExceeded(EscalationRequired):
    """A review stage reached its iteration cap; terminal for that stage only."""

    error_type = "iteration_cap_exceeded"

    def __init__(self, stage: str, iterations: int, limit: int):
        super().__init__(
            f"Stage {stage} reached {iterations}/{limit} iterations without approval",
            stage=stage,
            iterations=iterations,
            limit=limit,
        )
        self.iterations = iterations
        self.limit = limit
