"""Exception hierarchy for attribution, commit and export failures"""


class AttributionError(Exception):
    """Base class for errors raised by the attribution pipeline."""


class StoreUnavailableError(AttributionError):
    """The session store could not be reached after the configured retries."""


class ResolverError(AttributionError):
    """A store query failed while resolving an inbound event."""


class CommitError(AttributionError):
    """The engagement transaction could not be applied."""


class ExportError(AttributionError):
    """An export cycle failed.

    ``retryable`` is set when the failure looks like a rate limit or quota
    rejection from the spreadsheet API.
    """

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable
