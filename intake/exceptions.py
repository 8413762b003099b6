"""Exceptions for the intake pipeline.

Every error carries a machine-readable ``reason`` code that ends up in
rejected pipeline results, next to the human-readable message.
"""


class IntakeError(Exception):
    """Base exception for all intake errors."""

    reason = 'IntakeError'
    retryable = False
    fatal = False

    @property
    def message(self) -> str:
        return str(self)


class InsufficientContent(IntakeError):
    """Document text is shorter than the rubric minimum."""

    reason = 'InsufficientContent'

    def __init__(self, length: int, minimum: int):
        super().__init__(
            f"Content too short: {length} characters, minimum is {minimum}"
        )
        self.length = length
        self.minimum = minimum


class ExtractionFailed(IntakeError):
    """
    The content extractor returned no usable content.

    Raised for any non-success response regardless of cause (network,
    rate limit, malformed page).
    """

    reason = 'ExtractionFailed'
    retryable = True

    def __init__(self, message: str, url: str = None, status_code: int = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ExtractionTimeout(ExtractionFailed):
    """The content extractor did not answer within the configured timeout."""

    reason = 'ExtractionTimeout'


class RubricMismatch(IntakeError):
    """
    A scoring function returned a value outside [1, 5].

    This is a defect in the rubric, not in the input document, so it halts
    all processing that uses the rubric.
    """

    reason = 'RubricMismatch'
    fatal = True

    def __init__(self, criterion: str, value):
        super().__init__(
            f"Criterion '{criterion}' returned {value!r}; expected an integer in [1, 5]"
        )
        self.criterion = criterion
        self.value = value


class NoMatchingRule(IntakeError):
    """No taxonomy heuristic matched an axis. Reported as a warning only."""

    reason = 'NoMatchingRule'

    def __init__(self, axis: str):
        super().__init__(f"No taxonomy rule matched axis '{axis}'")
        self.axis = axis


class InvariantViolation(IntakeError):
    """A registry write would break a record invariant; nothing was written."""

    reason = 'InvariantViolation'


class ItemNotFound(IntakeError):
    """No classified item with the given id exists."""

    reason = 'ItemNotFound'

    def __init__(self, item_id: str):
        super().__init__(f"No classified item with id '{item_id}'")
        self.item_id = item_id


class InvalidRequest(IntakeError):
    """Pipeline invocation is malformed (e.g. both or neither of url/rawText)."""

    reason = 'InvalidRequest'


class ConfigurationError(IntakeError):
    """Configuration is unreadable or fails startup validation."""

    reason = 'ConfigurationError'
    fatal = True


class PipelineCancelled(IntakeError):
    """The caller aborted a pipeline instance; partial state was discarded."""

    reason = 'Cancelled'
