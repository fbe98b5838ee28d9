# core/errors.py
from enum import Enum
from typing import Optional


class WalletHubError(Exception):
    """Root of every error the intent pipeline raises on purpose."""


# -----------------------------
# Classification
# -----------------------------
class ClassificationReason(str, Enum):
    UNRECOGNIZED = "unrecognized"
    EMPTY_INPUT = "empty_input"
    INVALID_ENTITIES = "invalid_entities"


class ClassificationError(WalletHubError):
    """
    Raw input could not be understood.
    Terminal: the pipeline never guesses a fallback action.
    """

    def __init__(self, reason: ClassificationReason, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or f"Could not classify input ({reason.value})")


# -----------------------------
# Stage failures (business)
# -----------------------------
class ProviderError(WalletHubError):
    """A quote / balance / reward source failed or timed out."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class LimiterRejection(WalletHubError):
    """Daily cap exceeded, approval too large, or counterparty not allowlisted."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class BuildError(WalletHubError):
    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


# -----------------------------
# State machine
# -----------------------------
class InvalidTransitionError(WalletHubError):
    def __init__(self, intent_id: str, current: str, target: str, message: Optional[str] = None):
        self.intent_id = intent_id
        self.current = current
        self.target = target
        super().__init__(
            message or f"Intent {intent_id} cannot move from '{current}' to '{target}'"
        )


class StaleStatusError(InvalidTransitionError):
    """Compare-and-swap status write lost: the stored status is not the expected one."""

    def __init__(self, intent_id: str, expected: str, actual: str, target: str):
        self.expected = expected
        super().__init__(
            intent_id,
            actual,
            target,
            f"Intent {intent_id} expected status '{expected}' but found '{actual}'",
        )


class IntentNotFoundError(WalletHubError):
    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        super().__init__(f"Intent {intent_id} not found")


# -----------------------------
# Infrastructure
# -----------------------------
class PersistenceError(WalletHubError):
    """
    A storage write or read failed.
    Never merged with business failures; callers own retry/backoff.
    """
