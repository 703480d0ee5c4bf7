"""
Paper Lifecycle States

SUBMITTED -> UNDER_REVIEW -> ACCEPTED -> PUBLISHED, with REJECTED reachable
from every non-terminal state. PUBLISHED and REJECTED are terminal.
"""

from enum import Enum
from typing import Dict, Set, Tuple

from editorial.errors import InvalidTransition, ValidationError


class PaperStatus(Enum):
    """Paper lifecycle status."""
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    PUBLISHED = "PUBLISHED"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]

    @classmethod
    def from_string(cls, value: str) -> 'PaperStatus':
        try:
            return cls(value.strip().upper())
        except (ValueError, AttributeError):
            raise ValidationError(f"Unknown paper status: {value!r}")


ALLOWED_TRANSITIONS: Dict[PaperStatus, Set[PaperStatus]] = {
    PaperStatus.SUBMITTED: {PaperStatus.UNDER_REVIEW, PaperStatus.REJECTED},
    PaperStatus.UNDER_REVIEW: {PaperStatus.ACCEPTED, PaperStatus.REJECTED},
    PaperStatus.ACCEPTED: {PaperStatus.PUBLISHED, PaperStatus.REJECTED},
    PaperStatus.REJECTED: set(),
    PaperStatus.PUBLISHED: set(),
}


# Protected action checked before moving into each target status
TRANSITION_ACTIONS: Dict[PaperStatus, str] = {
    PaperStatus.UNDER_REVIEW: "paper.transition.review",
    PaperStatus.ACCEPTED: "paper.transition.accept",
    PaperStatus.REJECTED: "paper.transition.reject",
    PaperStatus.PUBLISHED: "paper.transition.publish",
}


# Publication tracker shown to authors; step numbers start at 1
PUBLICATION_STEPS: Tuple[str, ...] = (
    "Submitted",
    "Initial Screening",
    "ID Assigned",
    "Editorial Review",
    "Status Notification",
    "Author Formalities",
    "Final Publication",
)


# Statuses that notify the corresponding author
NOTIFY_STATUSES = {
    PaperStatus.UNDER_REVIEW,
    PaperStatus.ACCEPTED,
    PaperStatus.REJECTED,
    PaperStatus.PUBLISHED,
}


def validate_status_transition(current: PaperStatus, new: PaperStatus) -> None:
    """Validate a transition or raise InvalidTransition.

    Args:
        current: Current paper status.
        new: Desired new paper status.
    """
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise InvalidTransition(
            f"Invalid transition {current.value} -> {new.value}. "
            f"Allowed: {sorted(s.value for s in allowed)}"
        )
