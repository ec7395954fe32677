class FeedError(Exception):
    """Base class for failures raised while fetching a feed."""

    retryable = False


class NetworkError(FeedError):
    """Connectivity problem, HTTP error status or socket timeout."""

    retryable = True


class FormatError(FeedError):
    """Payload could not be parsed or had an unexpected shape."""


class EmptyResultError(FeedError):
    """Feed answered successfully but had nothing to report."""


class ConfigurationError(FeedError):
    """Source is misconfigured and was skipped before any network attempt."""
