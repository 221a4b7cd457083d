"""Orchestration loop: execute one phase decision per tick."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from multi_ai_pipeline.config import PipelineConfig
from multi_ai_pipeline.constants import (
    CLAUDE_STDERR_LOG,
    CODEX_STDERR_LOG,
    IMPL_RESULT_FILE,
    PLAN_FILE,
    STAGE_IMPLEMENTATION,
    STAGE_PLAN,
    STAGE_REQUIREMENTS,
    USER_STORY_FILE,
)
from multi_ai_pipeline.errors import EscalationRequired, IterationCapExceeded, PipelineError
from multi_ai_pipeline.models.pipeline import PipelineState, PipelineStatus
from multi_ai_pipeline.models.provider import ProviderType
from multi_ai_pipeline.providers.claude_code import ClaudeCodeProvider
from multi_ai_pipeline.providers.codex import CodexProvider
from multi_ai_pipeline.services.phase_service import (
    DEFAULT_STAGE_PLAN,
    PhaseAction,
    PhaseDecision,
    Stage,
    StagePlan,
    detect_phase,
)
from multi_ai_pipeline.services.state_service import PipelineStateStore, record_error
from multi_ai_pipeline.utils.events import EventEmitter

logger = logging.getLogger(__name__)

REWORK_DIRECTIVE = (
    "The reviewer rejected this implementation. Rework the approach starting from the "
    "approved plan instead of patching the previous attempt."
)


def build_stage_instructions(
    stage: Stage,
    task_dir: Path,
    feedback: Optional[str] = None,
    feedback_title: str = "Review Feedback",
    answers: Optional[str] = None,
    rework: bool = False,
) -> str:
    """Task instructions for a Claude-driven stage."""
    output = task_dir / stage.artifact
    if stage.name == STAGE_REQUIREMENTS:
        text = f"Gather the requirements for this feature and write the user story as JSON to {output}."
    elif stage.name == STAGE_PLAN:
        text = (
            f"Create a detailed implementation plan from {task_dir / USER_STORY_FILE} "
            f"and write it as JSON to {output}."
        )
    elif stage.name == STAGE_IMPLEMENTATION:
        text = (
            f"Implement the approved plan in {task_dir / PLAN_FILE}. Write the result as JSON to "
            f'{output} with "status" set to complete, partial or failed.'
        )
    elif stage.review_gate == "plan":
        text = (
            f"Review the plan in {task_dir / PLAN_FILE} against {task_dir / USER_STORY_FILE}. "
            f'Write your review as JSON to {output} with "status" and "summary".'
        )
    else:
        text = (
            f"Review the implementation described in {task_dir / IMPL_RESULT_FILE} against the plan "
            f'in {task_dir / PLAN_FILE}. Write your review as JSON to {output} with "status" and "summary".'
        )

    if feedback:
        text += f"\n\n## {feedback_title}\n\n{feedback}"
    if rework:
        text += f"\n\n{REWORK_DIRECTIVE}"
    if answers:
        text += f"\n\n## Answers to Clarification Questions\n\n{answers}"
    return text


def escalation_error(decision: PhaseDecision, config: PipelineConfig) -> EscalationRequired:
    """Rebuild the escalation error carried by an ESCALATE decision."""
    error = decision.error or {}
    if error.get("error") == IterationCapExceeded.error_type:
        return IterationCapExceeded(decision.stage, decision.iteration, config.max_iterations)
    return EscalationRequired(decision.reason, stage=decision.stage)


class TickResult(BaseModel):
    """Outcome of one orchestration tick."""

    stage: Optional[str] = None
    action: PhaseAction
    outcome: str
    halted: bool = False
    iteration: int = 0
    used_answers: bool = False
    questions: List[Any] = Field(default_factory=list)
    event: Optional[Dict[str, Any]] = None
    error_file: Optional[str] = None


class PipelineOrchestrator:
    """Drives the stage plan one decision at a time.

    Each tick loads the state document, detects the phase, executes exactly one
    decision and returns. Provider failures are logged to the error directory,
    put the pipeline in the ``error`` status and propagate unchanged.
    """

    def __init__(
        self,
        config: PipelineConfig,
        emitter: Optional[EventEmitter] = None,
        claude: Optional[ClaudeCodeProvider] = None,
        codex: Optional[CodexProvider] = None,
        store: Optional[PipelineStateStore] = None,
        plan: Optional[StagePlan] = None,
    ):
        self.config = config
        self.emitter = emitter or EventEmitter()
        self.claude = claude or ClaudeCodeProvider(config, self.emitter)
        self.codex = codex or CodexProvider(config, self.emitter)
        self.store = store or PipelineStateStore(config.task_path)
        self.plan = plan or DEFAULT_STAGE_PLAN

    @property
    def task_dir(self) -> Path:
        return self.config.task_path

    def detect(self) -> PhaseDecision:
        return detect_phase(self.plan, self.task_dir, self.store.load(), self.config)

    def tick(self, answers: Optional[str] = None) -> TickResult:
        self.task_dir.mkdir(parents=True, exist_ok=True)
        decision = self.detect()
        logger.info(f"Phase: {decision.action.value} {decision.stage or ''} ({decision.reason})")
        self.emitter.emit(
            "phase",
            stage=decision.stage,
            action=decision.action.value,
            reason=decision.reason,
            iteration=decision.iteration,
        )

        try:
            return self._execute(decision, answers)
        except PipelineError as e:
            state = self.store.set_status(PipelineStatus.ERROR)
            record_error(self.task_dir, e, state)
            raise

    def run(self, max_ticks: Optional[int] = None, answers: Optional[str] = None) -> List[TickResult]:
        """Tick until the pipeline completes, escalates or waits for answers."""
        max_ticks = max_ticks or self.config.max_ticks
        results: List[TickResult] = []
        for _ in range(max_ticks):
            result = self.tick(answers=answers)
            results.append(result)
            if result.used_answers:
                answers = None
            if result.halted:
                return results
        logger.warning(f"Stopped after {max_ticks} ticks without reaching a halting state")
        return results

    def reset(self) -> PipelineState:
        """Delete every artifact and session marker and write a fresh state document."""
        for stage in self.plan:
            (self.task_dir / stage.artifact).unlink(missing_ok=True)
        for log_name in (CLAUDE_STDERR_LOG, CODEX_STDERR_LOG):
            (self.task_dir / log_name).unlink(missing_ok=True)
        self.codex.sessions.clear_all()
        logger.info(f"Pipeline reset in {self.task_dir}")
        return self.store.init(reset=True)

    # ── Decision handlers ──────────────────────────────────────────────

    def _execute(self, decision: PhaseDecision, answers: Optional[str]) -> TickResult:
        action = decision.action

        if action is PhaseAction.COMPLETE:
            self.store.set_status(PipelineStatus.COMPLETE)
            self.emitter.emit("pipeline_complete")
            return TickResult(action=action, outcome="complete", halted=True)

        if action is PhaseAction.ESCALATE:
            error = escalation_error(decision, self.config)
            state = self.store.set_status(PipelineStatus.ESCALATED)
            error_file = record_error(self.task_dir, error, state)
            self.emitter.write(error.to_event())
            return TickResult(
                stage=decision.stage,
                action=action,
                outcome="escalated",
                halted=True,
                iteration=decision.iteration,
                error_file=str(error_file),
            )

        stage = self.plan[decision.stage]

        if action is PhaseAction.CLARIFY and not answers:
            self.store.set_status(PipelineStatus.NEEDS_USER_INPUT)
            self.emitter.emit("needs_user_input", stage=stage.name, questions=decision.questions)
            return TickResult(
                stage=stage.name,
                action=action,
                outcome="awaiting_input",
                halted=True,
                iteration=decision.iteration,
                questions=decision.questions,
            )

        self.store.set_status(PipelineStatus.IN_PROGRESS)

        if action is PhaseAction.INVOKE:
            event = self._run_stage(stage, answers=answers)
            return TickResult(
                stage=stage.name,
                action=action,
                outcome="invoked",
                iteration=decision.iteration,
                used_answers=bool(answers),
                event=event,
            )

        if action is PhaseAction.CLARIFY:
            self._discard(stage)
            event = self._run_stage(stage, answers=answers)
            iteration = decision.iteration
            if self.config.clarifications_count_toward_cap:
                iteration = self.store.increment(stage.name)
            return TickResult(
                stage=stage.name,
                action=action,
                outcome="answered",
                iteration=iteration,
                used_answers=True,
                event=event,
            )

        if action is PhaseAction.CONTINUE:
            previous = json.dumps(decision.document, indent=2)
            event = self._run_stage(stage, feedback=previous, feedback_title="Previous Result")
            iteration = self.store.increment(stage.name)
            return TickResult(
                stage=stage.name, action=action, outcome="continued", iteration=iteration, event=event
            )

        # PhaseAction.FIX
        fixer = self.plan[stage.upstream]
        feedback = json.dumps(decision.document, indent=2)
        # Everything after this reviewer was produced against the artifact being rewritten
        for later in self.plan.after(stage.name):
            self._discard(later)
        self._run_stage(fixer, feedback=feedback, rework=decision.rework)
        iteration = self.store.increment(stage.name)

        self._discard(stage)
        summary = (decision.document or {}).get("summary", "")
        changes = f"Revised {fixer.artifact} to address {stage.name} feedback: {summary}".strip()
        event = self._run_stage(stage, changes_summary=changes)
        return TickResult(stage=stage.name, action=action, outcome="fixed", iteration=iteration, event=event)

    def _discard(self, stage: Stage) -> None:
        path = self.task_dir / stage.artifact
        if path.exists():
            path.unlink()
            logger.debug(f"Removed stale artifact {path}")

    def _run_stage(
        self,
        stage: Stage,
        feedback: Optional[str] = None,
        feedback_title: str = "Review Feedback",
        answers: Optional[str] = None,
        rework: bool = False,
        changes_summary: Optional[str] = None,
    ) -> Dict[str, Any]:
        if stage.provider is ProviderType.CODEX:
            return self.codex.run(
                stage.review_gate,
                changes_summary=changes_summary,
                answers=answers,
                stage=stage.name,
            )

        instructions = build_stage_instructions(
            stage,
            self.task_dir,
            feedback=feedback,
            feedback_title=feedback_title,
            answers=answers,
            rework=rework,
        )
        agent_file = self.config.agents_path / stage.agent_file if stage.agent_file else None
        return self.claude.run(
            instructions,
            output=self.task_dir / stage.artifact,
            agent_file=agent_file,
            model=stage.model,
            expected_kind=stage.kind,
            stage=stage.name,
        )
