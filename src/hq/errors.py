"""Engine exception hierarchy.

Every business-rule failure raised by a service derives from
``HabitQuestError``. The HTTP layer maps each class to a status code in
``hq.middleware.error_handler``; services never build HTTP responses.
"""

from __future__ import annotations


class HabitQuestError(Exception):
    """Base class for engine errors."""

    status_code = 400
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(HabitQuestError):
    """Input rejected before any state was mutated."""

    code = "validation_failed"


class AlreadyCompletedError(HabitQuestError):
    """A credited event already exists for this natural key."""

    status_code = 409
    code = "already_completed"


class InvalidTransitionError(HabitQuestError):
    """A state machine was asked to leave a state it cannot leave."""

    status_code = 409
    code = "invalid_transition"


class AmbiguousReversalError(HabitQuestError):
    """Undoing this completion would require guessing the prior streak."""

    status_code = 409
    code = "ambiguous_reversal"


class PermissionDenied(HabitQuestError):
    status_code = 403
    code = "forbidden"


class NotFound(HabitQuestError):
    status_code = 404
    code = "not_found"


class DataIntegrityError(HabitQuestError):
    """A row the flow depends on is missing. Not retryable."""

    status_code = 500
    code = "data_integrity"


class VerificationUnavailable(HabitQuestError):
    """The AI collaborator could not produce a verdict.

    Raised by verifier implementations only; the verification workflow
    converts it into a ``failed`` completion.
    """

    status_code = 503
    code = "verification_unavailable"
