"""Domain error taxonomy.

Every error carries a stable machine-readable ``code`` and a human message.
They subclass ``ValueError`` so callers that only care about "the request was
rejected" can keep catching ``ValueError``.
"""
from typing import Optional


class PollEngineError(ValueError):
    """Base class for all client-visible poll engine errors."""

    code = "error"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(PollEngineError):
    code = "validation_error"
    status_code = 422
    default_message = "Invalid input"


class InvalidOption(PollEngineError):
    code = "invalid_option"
    status_code = 422
    default_message = "Invalid poll option"


class InvalidVerification(PollEngineError):
    """Raised for any failed code check.

    The message never says whether the code was wrong, expired, consumed or
    issued for another poll.
    """

    code = "invalid_verification"
    status_code = 401
    default_message = "Invalid or expired code"

    def __init__(self):
        super().__init__(self.default_message)


class PollNotFound(PollEngineError):
    code = "poll_not_found"
    status_code = 404
    default_message = "Poll not found"


class PollNotActive(PollEngineError):
    code = "poll_not_active"
    status_code = 409
    default_message = "This poll has ended or is not active"


class DuplicateVote(PollEngineError):
    code = "duplicate_vote"
    status_code = 409
    default_message = "You have already voted on this poll"


class InvalidTransition(PollEngineError):
    code = "invalid_transition"
    status_code = 409
    default_message = "Poll status cannot change this way"


class PollNotEnded(PollEngineError):
    code = "poll_not_ended"
    status_code = 409
    default_message = "Poll has not ended yet"


class StorageUnavailable(PollEngineError):
    """Storage failure. The only retryable error class."""

    code = "storage_unavailable"
    status_code = 503
    default_message = "Service temporarily unavailable"
