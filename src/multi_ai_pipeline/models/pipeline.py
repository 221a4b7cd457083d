"""Pipeline state document model."""

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from multi_ai_pipeline.constants import COUNTED_STAGES


class PipelineStatus(str, Enum):
    """Status of the pipeline state document."""

    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    NEEDS_USER_INPUT = "needs_user_input"
    ESCALATED = "escalated"
    COMPLETE = "complete"
    ERROR = "error"


def fresh_iterations() -> Dict[str, int]:
    return {stage: 0 for stage in COUNTED_STAGES}


class PipelineState(BaseModel):
    """Snapshot of .task/state.json passed explicitly into each orchestration tick."""

    pipeline_id: Optional[str] = None
    status: PipelineStatus = PipelineStatus.IDLE
    iterations: Dict[str, int] = Field(default_factory=fresh_iterations)
    started_at: Optional[str] = None
    updated_at: Optional[str] = None
    previous_status: Optional[PipelineStatus] = None

    def iteration(self, stage: str) -> int:
        return self.iterations.get(stage, 0)
