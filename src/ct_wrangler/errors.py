"""Error types raised while classifying and wrangling CT logs."""


class WranglerError(Exception):
    """Base class for all wrangler failures"""

    exit_code = 1
    retry_safe = True


class InvalidInvocation(WranglerError):
    """Missing or invalid parameters; nothing was touched."""

    exit_code = 2


class LogBusy(InvalidInvocation):
    """Another wrangler run currently owns this log's checkpoint."""


class NetworkFailure(WranglerError):
    """The size query failed or the log answered with malformed data."""

    exit_code = 3


class ConsistencyViolation(WranglerError):
    """The log reported a smaller tree than previously observed.

    Not retried: the log is untrustworthy until an operator decides otherwise.
    """

    exit_code = 4
    retry_safe = False

    def __init__(self, message: str, previous_size: int, observed_size: int):
        super().__init__(message)
        self.previous_size = previous_size
        self.observed_size = observed_size


class FetchFailure(WranglerError):
    """The external fetch tool exited non-zero, was missing or timed out."""

    exit_code = 5


class IntegrityViolation(WranglerError):
    """Local storage disagrees with the checkpoint; needs manual cleanup."""

    exit_code = 6
    retry_safe = False


class CatalogError(WranglerError):
    """The log list could not be loaded or parsed."""

    exit_code = 7
