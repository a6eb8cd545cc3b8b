"""
Error taxonomy for the Content Audit Platform.

Errors flagged ``retryable`` are handed back to the task queue for another
attempt with backoff; everything else is terminal for the job.
"""


class ContentAuditError(Exception):
    """Base class for all platform errors."""

    retryable = False


class NotFoundError(ContentAuditError):
    """A page, project, guideline or suggestion is absent or not owned by the caller."""


class PreconditionFailedError(ContentAuditError):
    """The operation is valid but the record is not in a state that allows it."""


class ValidationError(ContentAuditError):
    """Malformed input, such as an AI change draft missing required fields."""


class JobPayloadError(ValidationError):
    """A queued job carried a payload that does not match its job name."""


class ExternalServiceError(ContentAuditError):
    """Fetch timeout, provider error or unusable AI response."""

    retryable = True


class LeaseHeldError(ContentAuditError):
    """Another worker is scoring the same page right now."""

    retryable = True
