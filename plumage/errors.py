"""Error taxonomy for the plumage content pipeline."""


class PlumageError(Exception):
    """Base class for all pipeline errors."""


class NotFoundError(PlumageError):
    """Raised when a job, batch or content item does not exist."""


class StorageError(PlumageError):
    """Raised when the persistent store fails. The transaction was rolled back."""


class UnknownProviderError(PlumageError):
    """Raised when a request names a provider that is not registered."""


# Generation errors


class GenerationError(PlumageError):
    """Base class for failures of an upstream generation call."""

    retryable: bool = False
    kind: str = "generation"


class TransientProviderError(GenerationError):
    """Provider failed in a way that may succeed on retry (5xx, connection reset)."""

    retryable = True
    kind = "transient"


class PayloadValidationError(GenerationError):
    """The provider response does not match any known payload shape."""

    retryable = False
    kind = "validation"


class InvalidRequestError(GenerationError):
    """The request lacks parameters the provider needs. Retrying cannot help."""

    retryable = False
    kind = "invalid_request"


class RateLimitError(GenerationError):
    """Provider asked us to slow down."""

    retryable = True
    kind = "rate_limit"

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class GenerationTimeoutError(GenerationError):
    """A single generation call exceeded its time budget."""

    retryable = True
    kind = "timeout"


# State machine errors


class InvalidTransitionError(PlumageError):
    """A status transition was attempted from a state that does not allow it."""

    def __init__(self, entity_id, current_status, target_status):
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Invalid transition for {entity_id}: {_value(current_status)} -> {_value(target_status)}"
        )


class JobAlreadyTerminalError(InvalidTransitionError):
    """The job already reached completed or failed."""


class JobAlreadyClaimedError(InvalidTransitionError):
    """Another worker moved the job out of pending first."""


class AlreadyReviewedError(InvalidTransitionError):
    """The content item was already approved or rejected."""

    def __init__(self, entity_id, current_status, target_status):
        super().__init__(entity_id, current_status, target_status)
        self.args = (f"Content item {entity_id} already reviewed ({_value(current_status)})",)


def _value(status) -> str:
    return getattr(status, "value", str(status))
