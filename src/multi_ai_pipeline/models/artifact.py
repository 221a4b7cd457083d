"""Artifact document kinds and their status enumerations."""

from enum import Enum
from typing import Optional


class ReviewStatus(str, Enum):
    """Verdict carried by review documents."""

    APPROVED = "approved"
    NEEDS_CHANGES = "needs_changes"
    NEEDS_CLARIFICATION = "needs_clarification"
    REJECTED = "rejected"


class ImplementationStatus(str, Enum):
    """Outcome carried by implementation documents."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


class DocumentKind(str, Enum):
    """Kind of artifact document, which determines its status contract."""

    REQUIREMENTS = "requirements"
    PLAN = "plan"
    REVIEW = "review"
    IMPLEMENTATION = "implementation"

    @property
    def status_enum(self) -> Optional[type]:
        """Status enum for this kind, or None when the kind has no status contract."""
        if self is DocumentKind.REVIEW:
            return ReviewStatus
        if self is DocumentKind.IMPLEMENTATION:
            return ImplementationStatus
        return None

    @property
    def allowed_statuses(self) -> list[str]:
        status_enum = self.status_enum
        if status_enum is None:
            return []
        return [s.value for s in status_enum]


# Terminal statuses that let the phase detector move past a stage
APPROVING_STATUSES = frozenset({ReviewStatus.APPROVED.value, ImplementationStatus.COMPLETE.value})


def parse_status(kind: DocumentKind, value: object) -> Optional[Enum]:
    """Parse a raw status value into the enum for ``kind``.

    Returns None for kinds without a status contract. Raises ValueError when the
    value is not one of the kind's allowed statuses.
    """
    status_enum = kind.status_enum
    if status_enum is None:
        return None
    return status_enum(value)
