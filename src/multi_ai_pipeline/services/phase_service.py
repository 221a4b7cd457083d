"""Phase detection: decide the single next pipeline action from the artifacts on disk.

Stages are walked in a fixed order. The first stage whose artifact is missing
or whose status is not approving is the current stage, and its status alone
picks the action. Nothing here spawns a process or writes a file.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, Field

from multi_ai_pipeline.config import PipelineConfig
from multi_ai_pipeline.constants import (
    CODE_REVIEW_FILES,
    IMPL_RESULT_FILE,
    PLAN_FILE,
    PLAN_REVIEW_FILES,
    STAGE_IMPLEMENTATION,
    STAGE_PLAN,
    STAGE_REQUIREMENTS,
    USER_STORY_FILE,
)
from multi_ai_pipeline.errors import EscalationRequired, IterationCapExceeded
from multi_ai_pipeline.models.artifact import (
    APPROVING_STATUSES,
    DocumentKind,
    ImplementationStatus,
    ReviewStatus,
    parse_status,
)
from multi_ai_pipeline.models.pipeline import PipelineState
from multi_ai_pipeline.models.provider import ProviderType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    """One step of the pipeline and everything needed to run it."""

    name: str
    artifact: str
    kind: DocumentKind
    provider: ProviderType
    agent_file: Optional[str] = None
    model: Optional[str] = None
    review_gate: Optional[str] = None  # "plan" or "code" for review stages
    upstream: Optional[str] = None  # stage whose artifact a fix rewrites
    counted: bool = False

    @property
    def is_review(self) -> bool:
        return self.kind is DocumentKind.REVIEW


def _plan_review(reviewer: str, provider: ProviderType, model: Optional[str]) -> Stage:
    return Stage(
        name=f"plan_review_{reviewer}",
        artifact=PLAN_REVIEW_FILES[reviewer],
        kind=DocumentKind.REVIEW,
        provider=provider,
        agent_file="plan-reviewer.md" if provider is ProviderType.CLAUDE_CODE else None,
        model=model,
        review_gate="plan",
        upstream=STAGE_PLAN,
        counted=True,
    )


def _code_review(reviewer: str, provider: ProviderType, model: Optional[str]) -> Stage:
    return Stage(
        name=f"code_review_{reviewer}",
        artifact=CODE_REVIEW_FILES[reviewer],
        kind=DocumentKind.REVIEW,
        provider=provider,
        agent_file="code-reviewer.md" if provider is ProviderType.CLAUDE_CODE else None,
        model=model,
        review_gate="code",
        upstream=STAGE_IMPLEMENTATION,
        counted=True,
    )


class StagePlan:
    """Ordered, immutable sequence of stages."""

    def __init__(self, stages: List[Stage]):
        names = [s.name for s in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate stage names in plan: {names}")
        self._stages = tuple(stages)
        self._by_name = {s.name: s for s in stages}

    def __iter__(self) -> Iterator[Stage]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __getitem__(self, name: str) -> Stage:
        return self._by_name[name]

    def names(self) -> List[str]:
        return [s.name for s in self._stages]

    def index(self, name: str) -> int:
        return self.names().index(name)

    def after(self, name: str) -> List[Stage]:
        """Stages strictly after ``name``."""
        return list(self._stages[self.index(name) + 1:])


DEFAULT_STAGE_PLAN = StagePlan(
    [
        Stage(
            name=STAGE_REQUIREMENTS,
            artifact=USER_STORY_FILE,
            kind=DocumentKind.REQUIREMENTS,
            provider=ProviderType.CLAUDE_CODE,
            agent_file="requirements-gatherer.md",
            model="opus",
        ),
        Stage(
            name=STAGE_PLAN,
            artifact=PLAN_FILE,
            kind=DocumentKind.PLAN,
            provider=ProviderType.CLAUDE_CODE,
            agent_file="planner.md",
            model="opus",
        ),
        _plan_review("sonnet", ProviderType.CLAUDE_CODE, "sonnet"),
        _plan_review("opus", ProviderType.CLAUDE_CODE, "opus"),
        _plan_review("codex", ProviderType.CODEX, None),
        Stage(
            name=STAGE_IMPLEMENTATION,
            artifact=IMPL_RESULT_FILE,
            kind=DocumentKind.IMPLEMENTATION,
            provider=ProviderType.CLAUDE_CODE,
            agent_file="implementer.md",
            model="sonnet",
            counted=True,
        ),
        _code_review("sonnet", ProviderType.CLAUDE_CODE, "sonnet"),
        _code_review("opus", ProviderType.CLAUDE_CODE, "opus"),
        _code_review("codex", ProviderType.CODEX, None),
    ]
)


class PhaseAction(str, Enum):
    INVOKE = "invoke"  # run the stage's agent fresh
    FIX = "fix"  # run the upstream fixer, then this reviewer again
    CLARIFY = "clarify"  # surface questions and wait for answers
    CONTINUE = "continue"  # re-run the implementer on a partial result
    ESCALATE = "escalate"  # hard stop for a human
    COMPLETE = "complete"


class PhaseDecision(BaseModel):
    """What the next tick should do, and why."""

    stage: Optional[str] = None
    action: PhaseAction
    reason: str = ""
    status: Optional[str] = None
    iteration: int = 0
    rework: bool = False
    questions: List[Any] = Field(default_factory=list)
    document: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


def read_artifact(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Parsed artifact, or None when it is missing, unreadable or not a JSON object."""
    p = Path(path)
    if not p.is_file():
        return None
    try:
        document = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unparseable artifact {p}: {e}")
        return None
    return document if isinstance(document, dict) else None


def _escalate(stage: Stage, error: EscalationRequired, **fields: Any) -> PhaseDecision:
    return PhaseDecision(
        stage=stage.name,
        action=PhaseAction.ESCALATE,
        reason=error.message,
        error=error.to_event(),
        **fields,
    )


def detect_phase(
    plan: StagePlan,
    task_dir: Union[str, Path],
    state: PipelineState,
    config: PipelineConfig,
) -> PhaseDecision:
    """Decide the next action for the pipeline.

    Args:
        plan: Ordered stages to walk
        task_dir: Directory holding the artifacts
        state: Snapshot of the state document (iteration counters)
        config: Cap and policy knobs

    Returns:
        PhaseDecision for the first unmet stage, or COMPLETE
    """
    task_dir = Path(task_dir)
    limit = config.max_iterations

    for stage in plan:
        document = read_artifact(task_dir / stage.artifact)
        if document is None:
            return PhaseDecision(
                stage=stage.name,
                action=PhaseAction.INVOKE,
                reason=f"{stage.artifact} does not exist",
                iteration=state.iteration(stage.name),
            )

        if not stage.kind.allowed_statuses:
            # Requirements and plan documents only need to exist and parse
            continue

        raw_status = document.get("status")
        try:
            status = parse_status(stage.kind, raw_status)
        except ValueError:
            return PhaseDecision(
                stage=stage.name,
                action=PhaseAction.INVOKE,
                reason=f"{stage.artifact} has invalid status {raw_status!r}",
                iteration=state.iteration(stage.name),
            )

        # A review without a summary never advances, whatever its status says
        if stage.kind is DocumentKind.REVIEW and not isinstance(document.get("summary"), str):
            return PhaseDecision(
                stage=stage.name,
                action=PhaseAction.INVOKE,
                reason=f"{stage.artifact} is missing a string summary",
                iteration=state.iteration(stage.name),
            )

        if status.value in APPROVING_STATUSES:
            continue

        count = state.iteration(stage.name)
        common: Dict[str, Any] = {"status": status.value, "iteration": count, "document": document}

        counts_toward_cap = stage.counted and (
            status is not ReviewStatus.NEEDS_CLARIFICATION or config.clarifications_count_toward_cap
        )
        if counts_toward_cap and count >= limit:
            logger.warning(f"{stage.name} reached iteration cap ({count}/{limit})")
            return _escalate(stage, IterationCapExceeded(stage.name, count, limit), **common)

        if status is ReviewStatus.NEEDS_CHANGES:
            return PhaseDecision(
                stage=stage.name,
                action=PhaseAction.FIX,
                reason=f"{stage.name} requested changes",
                **common,
            )

        if status is ReviewStatus.NEEDS_CLARIFICATION:
            questions = document.get("clarification_questions") or []
            if not isinstance(questions, list):
                questions = [questions]
            return PhaseDecision(
                stage=stage.name,
                action=PhaseAction.CLARIFY,
                reason=f"{stage.name} needs clarification",
                questions=questions,
                **common,
            )

        if status is ReviewStatus.REJECTED:
            if stage.review_gate == "code" and config.code_review_rejected_policy == "rework":
                return PhaseDecision(
                    stage=stage.name,
                    action=PhaseAction.FIX,
                    reason=f"{stage.name} rejected the implementation; full rework required",
                    rework=True,
                    **common,
                )
            return _escalate(
                stage,
                EscalationRequired(f"{stage.name} rejected the {stage.review_gate}", stage=stage.name),
                **common,
            )

        if status is ImplementationStatus.PARTIAL:
            return PhaseDecision(
                stage=stage.name,
                action=PhaseAction.CONTINUE,
                reason="Implementation is partial",
                **common,
            )

        # ImplementationStatus.FAILED
        return _escalate(
            stage,
            EscalationRequired("Implementer reported failure", stage=stage.name),
            **common,
        )

    return PhaseDecision(action=PhaseAction.COMPLETE, reason="All stages approved")
