"""Custom exceptions for the External Source Adapter."""


class SourceError(Exception):
    """Base exception for External Source Adapter errors."""


class FetchError(SourceError):
    """A fetch from the external source failed.

    Transient: the next scheduled or manual refresh tries again.
    """


class MutateError(SourceError):
    """The external source rejected or failed a mutation command."""
