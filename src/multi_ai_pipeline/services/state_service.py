"""Pipeline state document (.task/state.json) and error records."""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from pydantic import ValidationError

from multi_ai_pipeline.constants import ERRORS_DIR, STATE_FILE
from multi_ai_pipeline.errors import PipelineError
from multi_ai_pipeline.models.pipeline import PipelineState, PipelineStatus, fresh_iterations
from multi_ai_pipeline.utils.json_state import (
    Assignment,
    AssignmentOp,
    StateFileMalformed,
    load_json,
    set_values,
    utc_now,
    write_json_atomic,
)

logger = logging.getLogger(__name__)

# Entering one of these records where we came from
_RECORD_PREVIOUS = frozenset({PipelineStatus.ERROR, PipelineStatus.NEEDS_USER_INPUT})


class PipelineStateStore:
    """Handle on the singleton state document.

    Every mutation goes through the JSON state accessor, so the document on disk
    is always either the old or the new version.
    """

    def __init__(self, task_dir: Union[str, Path]):
        self.task_dir = Path(task_dir)
        self.path = self.task_dir / STATE_FILE

    def exists(self) -> bool:
        return self.path.is_file()

    def init(self, reset: bool = False) -> PipelineState:
        """Create a fresh state document unless one exists (or ``reset`` is set)."""
        if self.exists() and not reset:
            return self.load()
        now = utc_now()
        state = PipelineState(
            pipeline_id=f"pipeline-{uuid.uuid4().hex[:8]}",
            status=PipelineStatus.IDLE,
            iterations=fresh_iterations(),
            started_at=now,
            updated_at=now,
        )
        write_json_atomic(self.path, state.model_dump(mode="json", exclude_none=True))
        logger.info(f"Initialized pipeline state at {self.path}")
        return state

    def load(self) -> PipelineState:
        """Load the state document, creating it on first use."""
        if not self.exists():
            return self.init()
        data = load_json(self.path)
        try:
            return PipelineState.model_validate(data)
        except ValidationError as e:
            raise StateFileMalformed(f"Invalid pipeline state in {self.path}: {e}", self.path)

    def _update(self, assignments: Iterable[Assignment]) -> PipelineState:
        if not self.exists():
            self.init()
        assignments = list(assignments) + [Assignment(AssignmentOp.TIMESTAMP, "updated_at")]
        set_values(self.path, assignments)
        return self.load()

    def increment(self, stage: str) -> int:
        """Increment ``iterations.<stage>`` and return the new count."""
        state = self._update([Assignment(AssignmentOp.INCREMENT, f"iterations.{stage}")])
        count = state.iteration(stage)
        logger.info(f"Iteration counter {stage} -> {count}")
        return count

    def set_status(self, status: PipelineStatus) -> PipelineState:
        current = self.load()
        assignments = [Assignment(AssignmentOp.STRING, "status", status.value)]
        if status in _RECORD_PREVIOUS:
            if current.status != status:
                assignments.append(
                    Assignment(AssignmentOp.STRING, "previous_status", current.status.value)
                )
        else:
            assignments.append(Assignment(AssignmentOp.DELETE, "previous_status"))
        return self._update(assignments)

    def is_stuck(self, timeout_seconds: int = 600, now: Optional[datetime] = None) -> bool:
        """True when the document has not been updated for more than ``timeout_seconds``."""
        state = self.load()
        if not state.updated_at:
            return False
        try:
            updated = datetime.strptime(state.updated_at, "%Y-%m-%dT%H:%M:%SZ").replace(
                tzinfo=timezone.utc
            )
        except ValueError:
            return False
        now = now or datetime.now(timezone.utc)
        return (now - updated).total_seconds() > timeout_seconds


def record_error(
    task_dir: Union[str, Path],
    error: PipelineError,
    state: Optional[PipelineState] = None,
) -> Path:
    """Write .task/errors/error-<timestamp>.json with the failure and a state snapshot."""
    errors_dir = Path(task_dir) / ERRORS_DIR
    errors_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
    record: Dict[str, Any] = {
        "id": f"err-{stamp}",
        "timestamp": utc_now(),
        "stage": error.stage,
        "phase": error.phase,
        "error": {
            "type": error.error_type,
            "message": error.message,
            "exit_code": error.exit_code,
            "details": error.details,
        },
    }
    if state is not None:
        record["iteration"] = state.iteration(error.stage) if error.stage else None
        record["context"] = {"current_state": state.model_dump(mode="json", exclude_none=True)}
    error_file = errors_dir / f"error-{stamp}.json"
    write_json_atomic(error_file, record)
    logger.info(f"Error logged to: {error_file}")
    return error_file
