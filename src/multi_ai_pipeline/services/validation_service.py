"""Output validation: the single gate between "agent ran" and "orchestrator trusts the result"."""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Optional, Union

from multi_ai_pipeline.constants import (
    CODE_REVIEW_FILES,
    IMPL_RESULT_FILE,
    PLAN_FILE,
    PLAN_REVIEW_FILES,
    USER_STORY_FILE,
)
from multi_ai_pipeline.errors import (
    OutputInvalidEnumValue,
    OutputMissing,
    OutputMissingField,
    OutputNotJson,
    OutputUnreadable,
)
from multi_ai_pipeline.models.artifact import DocumentKind
from multi_ai_pipeline.utils.json_state import utc_now

logger = logging.getLogger(__name__)

_KIND_BY_FILE: Dict[str, DocumentKind] = {
    USER_STORY_FILE: DocumentKind.REQUIREMENTS,
    PLAN_FILE: DocumentKind.PLAN,
    IMPL_RESULT_FILE: DocumentKind.IMPLEMENTATION,
    **{name: DocumentKind.REVIEW for name in PLAN_REVIEW_FILES.values()},
    **{name: DocumentKind.REVIEW for name in CODE_REVIEW_FILES.values()},
}


def kind_for_artifact(path: Union[str, Path]) -> Optional[DocumentKind]:
    """Document kind implied by a well-known artifact file name, if any."""
    return _KIND_BY_FILE.get(Path(path).name)


def validate_output(
    path: Union[str, Path], expected_kind: Optional[DocumentKind], stage: Optional[str] = None
) -> Dict[str, Any]:
    """Validate an agent output file and return the parsed document.

    With ``expected_kind`` None, or a kind without a status contract, only the
    existence, readability and JSON checks apply.

    Raises:
        OutputMissing: The file does not exist
        OutputUnreadable: The file cannot be read or is empty
        OutputNotJson: The content does not parse as a JSON object
        OutputMissingField: ``status`` is absent, or ``summary`` on a review document
        OutputInvalidEnumValue: ``status`` is not allowed for ``expected_kind``
    """
    p = Path(path)
    if not p.is_file():
        raise OutputMissing(f"Output file not created: {p}", stage=stage, output_file=str(p))

    try:
        content = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise OutputUnreadable(f"Output file is unreadable: {e}", stage=stage, output_file=str(p))
    if not content.strip():
        raise OutputUnreadable("Output file is empty", stage=stage, output_file=str(p))

    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        raise OutputNotJson(f"Output is not valid JSON: {e}", stage=stage, output_file=str(p))
    if not isinstance(document, dict):
        raise OutputNotJson("Output JSON is not an object", stage=stage, output_file=str(p))

    allowed = expected_kind.allowed_statuses if expected_kind is not None else []
    if not allowed:
        return document

    if "status" not in document:
        raise OutputMissingField("status", stage=stage, output_file=str(p))
    status = document["status"]
    if not isinstance(status, str) or status not in allowed:
        raise OutputInvalidEnumValue(status, allowed, stage=stage, output_file=str(p))

    # A malformed-but-"approved" review must never advance the pipeline
    if expected_kind is DocumentKind.REVIEW and not isinstance(document.get("summary"), str):
        raise OutputMissingField(
            "summary",
            message='Output missing "summary" field or summary is not a string',
            stage=stage,
            output_file=str(p),
        )

    return document


def quarantine_output(path: Union[str, Path], errors_dir: Union[str, Path]) -> Optional[Path]:
    """Move an invalid output file out of the task directory.

    Returns the new location, or None if there was nothing to move.
    """
    p = Path(path)
    if not p.exists():
        return None
    target_dir = Path(errors_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    stamp = utc_now().replace(":", "").replace("-", "")
    target = target_dir / f"{p.stem}-{stamp}.rejected{p.suffix}"
    shutil.move(str(p), str(target))
    logger.warning(f"Moved invalid output {p} to {target}")
    return target
