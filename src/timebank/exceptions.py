"""Custom exception hierarchy for the TimeBank package."""

from __future__ import annotations


class TimeBankError(Exception):
    """Base class for all TimeBank specific errors."""


class NotFoundError(TimeBankError):
    """Raised when a referenced ledger entity does not exist."""


class UserNotFoundError(NotFoundError):
    """Raised when a user lookup fails."""


class ActivityNotFoundError(NotFoundError):
    """Raised when an activity is missing from its owner's activity log."""


class DepositNotFoundError(NotFoundError):
    """Raised when a deposit is missing from its owner's deposit list."""


class InvalidTransitionError(TimeBankError):
    """Raised when an operation is not allowed from the current state."""


class PersistenceError(TimeBankError):
    """Raised when the state blob could not be loaded or saved."""
