"""Reviewer session tracking via marker files scoped by review kind."""

import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from multi_ai_pipeline.constants import SESSION_MARKER_PREFIX

logger = logging.getLogger(__name__)

REVIEW_KINDS = ("plan", "code")


class SessionMode(str, Enum):
    FRESH = "fresh"
    RESUME = "resume"


class FailureKind(str, Enum):
    """Reclassification of a generic nonzero exit from the reviewer's stderr."""

    AUTH_REQUIRED = "auth_required"
    NOT_INSTALLED = "not_installed"
    SESSION_EXPIRED = "session_expired"


def classify_failure(stderr_text: str) -> Optional[FailureKind]:
    """Classify a failed reviewer run from its captured error stream.

    Checks run in order: authentication, then "not found", then session expiry.
    Returns None when nothing matches.
    """
    text = (stderr_text or "").lower()
    if "auth" in text:
        return FailureKind.AUTH_REQUIRED
    if "not found" in text:
        return FailureKind.NOT_INSTALLED
    if "session" in text or "expired" in text:
        return FailureKind.SESSION_EXPIRED
    return None


class SessionManager:
    """Independent NoSession/SessionOpen state per review kind.

    A marker file's existence is the only signal: present means the next
    invocation should resume, absent means start fresh.
    """

    def __init__(self, task_dir: Union[str, Path]):
        self.task_dir = Path(task_dir)

    def marker_path(self, kind: str) -> Path:
        if kind not in REVIEW_KINDS:
            raise ValueError(f"Invalid review kind '{kind}' (must be one of: {', '.join(REVIEW_KINDS)})")
        return self.task_dir / f"{SESSION_MARKER_PREFIX}{kind}"

    def has_session(self, kind: str) -> bool:
        return self.marker_path(kind).exists()

    def decide_mode(self, kind: str) -> SessionMode:
        return SessionMode.RESUME if self.has_session(kind) else SessionMode.FRESH

    def record_success(self, kind: str) -> bool:
        """Create the marker after a successful, validated invocation."""
        marker = self.marker_path(kind)
        try:
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.touch()
        except OSError as e:
            logger.warning(f"Could not create session marker {marker}: {e}")
            return False
        return True

    def record_expired(self, kind: str) -> None:
        """Drop the marker; the caller retries fresh exactly once."""
        marker = self.marker_path(kind)
        try:
            marker.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove session marker {marker}: {e}")
        else:
            logger.info(f"Cleared {kind} review session marker")

    def clear_all(self) -> None:
        for kind in REVIEW_KINDS:
            self.marker_path(kind).unlink(missing_ok=True)
