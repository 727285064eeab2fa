"""
Errors raised by the progression engine.

"Already applied" outcomes (XP already credited, achievement already
unlocked, no level state for the trail) are not errors: they come back
as False / None / [] so callers can tell "nothing to do" from failure.
"""


class ProgressionError(Exception):
    """Base class for engine errors surfaced to the caller."""


class NotFoundError(ProgressionError):
    """User, module, submission or progress row does not exist."""

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class ConcurrencyConflictError(ProgressionError):
    """Conflicting writes kept winning after all retries; the caller may retry the action."""


class AlreadyCompletedError(ProgressionError):
    """Staff skip requested for a module the student already completed."""


class NotStaffSkippedError(ProgressionError):
    """Revert requested for a completion that did not come from a staff skip."""
