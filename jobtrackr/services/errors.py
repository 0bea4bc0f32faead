# =============================================================================
# Error Taxonomy
# =============================================================================
#
# Each class maps to one failure domain so callers (HTTP handlers, the Celery
# retry policy) can react without string matching:
#
#   NotFound                 → entity/job absent or not owned      (HTTP 404)
#   ValidationError          → bad input, before any external call (HTTP 400)
#   InvalidProviderResponse  → provider output failed the schema   (HTTP 502)
#                              never retried with identical input
#   TransientProviderError   → network / timeout / rate limit      (HTTP 503)
#                              retried by the queue's policy
#   StorageFailure           → blob store operation failed         (HTTP 502)
#                              fatal for upload, swallowed on deletion cleanup
#   AuditLogImmutableError   → attempted update/delete of an audit entry
# =============================================================================


class JobTrackrError(Exception):
    """Base class for domain errors."""


class NotFound(JobTrackrError):
    """The entity or job does not exist, or is not owned by the caller."""


class ValidationError(JobTrackrError):
    """Input was rejected before any side effect or external call."""

    def __init__(self, message: str, details: list | None = None) -> None:
        super().__init__(message)
        self.details = details


class InvalidProviderResponse(JobTrackrError):
    """
    The inference provider answered, but not in the required shape.

    Distinct from TransientProviderError: resubmitting the same input is
    unlikely to help, so the queue does not retry it.
    """

    def __init__(self, message: str, raw_content: str | None = None) -> None:
        super().__init__(message)
        self.raw_content = raw_content


class TransientProviderError(JobTrackrError):
    """The inference call failed for a reason worth retrying."""


class StorageFailure(JobTrackrError):
    """A blob store put/read/delete failed."""


class AuditLogImmutableError(RuntimeError):
    """Raised when code tries to update or delete an audit log entry."""
