"""Codex CLI provider implementation (final-gate plan and code reviews)."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from multi_ai_pipeline.config import PipelineConfig
from multi_ai_pipeline.constants import (
    CODE_REVIEW_FILES,
    CODE_REVIEW_SCHEMA,
    CODEX_STDERR_LOG,
    ERRORS_DIR,
    EXIT_CLI_ERROR,
    IMPL_RESULT_FILE,
    PLAN_FILE,
    PLAN_REVIEW_FILES,
    PLAN_REVIEW_SCHEMA,
)
from multi_ai_pipeline.errors import (
    AuthenticationRequired,
    ExecutableNotInstalled,
    InputValidationError,
    NonZeroExit,
    OutputValidationError,
    PipelineError,
    SessionExpired,
)
from multi_ai_pipeline.models.artifact import DocumentKind
from multi_ai_pipeline.models.invocation import InvocationOutcome, InvocationResult
from multi_ai_pipeline.models.provider import ProviderType
from multi_ai_pipeline.providers.base import BaseProvider, get_platform
from multi_ai_pipeline.services.session_service import (
    REVIEW_KINDS,
    FailureKind,
    SessionManager,
    SessionMode,
    classify_failure,
)
from multi_ai_pipeline.services.validation_service import quarantine_output, validate_output
from multi_ai_pipeline.utils.events import EventEmitter
from multi_ai_pipeline.utils.json_state import utc_now
from multi_ai_pipeline.utils.process import spawn_process

logger = logging.getLogger(__name__)


class CodexProvider(BaseProvider):
    """Provider for Codex CLI tool integration.

    Reviews resume the previous conversation when a session marker exists for the
    review type. An expired session is retried once as a fresh review.
    """

    provider_type = ProviderType.CODEX
    install_hint = "Install from: https://codex.openai.com"

    def __init__(
        self,
        config: PipelineConfig,
        emitter: Optional[EventEmitter] = None,
        sessions: Optional[SessionManager] = None,
    ):
        super().__init__(config, emitter)
        self.sessions = sessions or SessionManager(config.task_path)

    @property
    def executable(self) -> str:
        return self.config.codex_executable

    def output_file(self, review_type: str) -> Path:
        files = CODE_REVIEW_FILES if review_type == "code" else PLAN_REVIEW_FILES
        return self.task_dir / files["codex"]

    def input_file(self, review_type: str) -> Path:
        return self.task_dir / (IMPL_RESULT_FILE if review_type == "code" else PLAN_FILE)

    def schema_file(self, review_type: str) -> Path:
        name = CODE_REVIEW_SCHEMA if review_type == "code" else PLAN_REVIEW_SCHEMA
        return self.config.schemas_path / name

    def validate_inputs(self, review_type: Optional[str], stage: Optional[str] = None) -> None:
        errors: List[str] = []
        if review_type not in REVIEW_KINDS:
            errors.append('Invalid or missing --type (must be "plan" or "code")')
        if not self.task_dir.is_dir():
            errors.append(f"{self.config.task_dir} directory not found")
        elif review_type in REVIEW_KINDS and not self.input_file(review_type).is_file():
            errors.append(f"Missing {self.input_file(review_type)} for {review_type} review")
        if errors:
            raise InputValidationError("; ".join(errors), stage=stage, errors=errors)

    def build_prompt(
        self,
        review_type: str,
        is_resume: bool,
        changes_summary: Optional[str] = None,
        answers: Optional[str] = None,
    ) -> str:
        input_file = self.input_file(review_type)
        standards = self.config.standards_path
        if is_resume and changes_summary:
            prompt = (
                f"Re-review after fixes. Changes made:\n{changes_summary}\n\n"
                f"Verify fixes address previous concerns. Check against {standards}."
            )
        elif is_resume:
            prompt = (
                f"Re-review {input_file}. Previous concerns should be addressed. "
                f"Verify against {standards}."
            )
        else:
            gate = "plan approval" if review_type == "plan" else "code quality"
            prompt = (
                f"Review {input_file} against {standards}. Final gate review for {gate}. "
                "If unclear, set needs_clarification: true."
            )
            if changes_summary:
                prompt += f"\n\nContext from previous round:\n{changes_summary}"
        if answers:
            prompt += f"\n\nAnswers to your clarification questions:\n{answers}"
        return prompt

    def build_command(
        self,
        review_type: str,
        is_resume: bool,
        changes_summary: Optional[str] = None,
        answers: Optional[str] = None,
    ) -> List[str]:
        args = ["exec", "--full-auto", "--skip-git-repo-check"]
        schema = self.schema_file(review_type)
        if schema.is_file():
            args.extend(["--output-schema", str(schema)])
        else:
            logger.debug(f"No output schema at {schema}, relying on output validation")
        args.extend(["-o", str(self.output_file(review_type))])
        if is_resume:
            args.extend(["resume", "--last"])
        args.append(self.build_prompt(review_type, is_resume, changes_summary, answers))
        return args

    def _invoke(self, args: List[str], timeout: int) -> InvocationResult:
        return spawn_process(
            self.executable,
            args,
            timeout=timeout,
            cwd=self.config.project_root,
            stderr_path=self.task_dir / CODEX_STDERR_LOG,
        )

    def run(
        self,
        review_type: Optional[str],
        force_resume: bool = False,
        changes_summary: Optional[str] = None,
        answers: Optional[str] = None,
        timeout: Optional[int] = None,
        stage: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run one Codex review and validate the review document.

        Returns:
            The ``complete`` event payload
        """
        timeout = timeout or self.config.codex_timeout
        session_active = review_type in REVIEW_KINDS and (
            self.sessions.decide_mode(review_type) is SessionMode.RESUME
        )
        is_resume = force_resume or session_active

        self.emitter.emit(
            "start",
            agent=self.provider_type.value,
            stage=stage,
            type=review_type,
            platform=get_platform(),
            isResume=is_resume,
            sessionActive=session_active,
            timeout_s=timeout,
            timestamp=utc_now(),
        )

        self.validate_inputs(review_type, stage=stage)
        self.check_installed(stage=stage)

        args = self.build_command(review_type, is_resume, changes_summary, answers)
        self.emitter.emit(
            "invoking",
            agent=self.provider_type.value,
            command=self.executable,
            isResume=is_resume,
            timeout_ms=timeout * 1000,
        )
        logger.info(f"Invoking codex {review_type} review (resume={is_resume}, stage={stage})")
        result = self._invoke(args, timeout)

        if (
            not result.succeeded
            and is_resume
            and result.classification is InvocationOutcome.NONZERO_EXIT
            and classify_failure(result.stderr) is FailureKind.SESSION_EXPIRED
        ):
            self.emitter.emit("session_expired", action="retrying_without_resume")
            self.sessions.record_expired(review_type)
            args = self.build_command(review_type, False, changes_summary, answers)
            result = self._invoke(args, timeout)

        if not result.succeeded:
            raise self._execution_error(result, review_type, timeout, stage)

        output = self.output_file(review_type)
        try:
            document = validate_output(output, DocumentKind.REVIEW, stage=stage)
        except OutputValidationError:
            # No session marker for a review we cannot trust
            quarantine_output(output, self.task_dir / ERRORS_DIR)
            raise

        marker_created = self.sessions.record_success(review_type)
        return self.emitter.emit(
            "complete",
            agent=self.provider_type.value,
            stage=stage,
            status=document["status"],
            summary=document["summary"],
            needs_clarification=bool(document.get("needs_clarification", False)),
            output_file=str(output),
            session_marker_created=marker_created,
            duration_ms=result.duration_ms,
        )

    def _execution_error(
        self, result: InvocationResult, review_type: str, timeout: int, stage: Optional[str]
    ) -> PipelineError:
        error = self.failure_for(result, timeout, stage=stage)
        if error is not None:
            return error

        kind = classify_failure(result.stderr)
        if kind is FailureKind.AUTH_REQUIRED:
            return AuthenticationRequired("Codex authentication required. Run: codex auth", stage=stage)
        if kind is FailureKind.NOT_INSTALLED:
            return ExecutableNotInstalled(
                f"Codex CLI not installed. {self.install_hint}", stage=stage, phase="execution"
            )
        if kind is FailureKind.SESSION_EXPIRED:
            self.sessions.record_expired(review_type)
            return SessionExpired("Codex session expired and retry failed", stage=stage)
        return NonZeroExit(
            f"Codex execution failed with exit code {result.exit_code}",
            stage=stage,
            exit_code=EXIT_CLI_ERROR,
            code=result.exit_code,
        )
