# core/status.py
from enum import Enum


class IntentStatus(str, Enum):
    """
    Lifecycle of one intent through the pipeline.
    """

    PLANNED = "planned"
    PREFLIGHT = "preflight"
    PREVIEWED = "previewed"
    BUILDING = "building"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"

    # -----------------------------
    # Semantic helpers (SAFE)
    # -----------------------------
    def is_cancellable(self) -> bool:
        return self in {IntentStatus.PLANNED, IntentStatus.PREVIEWED}

    def can_transition_to(self, target: "IntentStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    IntentStatus.PLANNED: {IntentStatus.PREFLIGHT, IntentStatus.REJECTED, IntentStatus.FAILED},
    IntentStatus.PREFLIGHT: {IntentStatus.PREVIEWED, IntentStatus.FAILED},
    IntentStatus.PREVIEWED: {
        IntentStatus.BUILDING,
        IntentStatus.COMPLETED,
        IntentStatus.REJECTED,
        IntentStatus.FAILED,
    },
    IntentStatus.BUILDING: {IntentStatus.SUBMITTED, IntentStatus.FAILED},
    IntentStatus.SUBMITTED: {IntentStatus.COMPLETED, IntentStatus.FAILED},
    IntentStatus.COMPLETED: set(),
    IntentStatus.FAILED: set(),
    IntentStatus.REJECTED: set(),
}


class TransactionStatus(str, Enum):
    """Reported on-chain outcome; independent of IntentStatus."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REVERTED = "reverted"
