"""Error taxonomy shared by the harvest, store and repair layers."""

from __future__ import annotations


class DepViewerError(Exception):
    """Base class for depviewer errors."""


class FetchError(DepViewerError):
    """A call against the remote metadata source failed."""

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class TransientFetchError(FetchError):
    """Network, timeout or CLI-level failure; retrying later may succeed."""


class MalformedResponseError(FetchError):
    """The remote source answered with an unexpected shape."""


class DiscoveryError(FetchError):
    """Type discovery failed. Nothing can be harvested without it."""


class DependencyLookupError(DepViewerError):
    """A live dependency lookup could not be served. Recoverable by the caller."""


class StoreWriteError(DepViewerError):
    """A store write transaction failed and was rolled back."""
