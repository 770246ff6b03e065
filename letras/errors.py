"""Scheduler error taxonomy.

Every error carries a machine-readable ``code`` and the HTTP status it maps to,
so the API layer can render them uniformly.
"""


class SchedulerError(Exception):
    """Base class for errors surfaced to API clients."""

    code = "scheduler_error"
    status_code = 500
    default_message = "Something went wrong; please try again"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidRating(SchedulerError):
    code = "invalid_rating"
    status_code = 400
    default_message = "Rating must be an integer between 1 and 4"


class InvalidRequest(SchedulerError):
    """Request body or parameters failed validation."""

    code = "invalid_request"
    status_code = 400
    default_message = "The request is malformed"


class InvalidState(SchedulerError):
    """Memory state became non-finite or negative after an update."""

    code = "invalid_state"
    status_code = 500


class StaleReview(SchedulerError):
    """The card is not the one currently presented to the user."""

    code = "stale_review"
    status_code = 409
    default_message = "This card is not the current card; fetch the next card and retry"


class NotFound(SchedulerError):
    code = "not_found"
    status_code = 404
    default_message = "Card not found"


class ConflictWriteFailed(SchedulerError):
    """A concurrent write won the race for the same review state."""

    code = "conflict"
    status_code = 409
    default_message = "The review conflicted with a concurrent update; please retry"


class StorageUnavailable(SchedulerError):
    code = "storage_unavailable"
    status_code = 503
    default_message = "Storage is temporarily unavailable; please retry"
