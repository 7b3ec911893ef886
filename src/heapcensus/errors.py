"""Exception hierarchy for heapcensus.

// [LAW:one-source-of-truth] Every error this package raises derives from CensusError.
"""


class CensusError(Exception):
    """Base class for all heapcensus errors."""


class SnapshotUnusableError(CensusError, ValueError):
    """Interchange data decoded to something that is not a usable snapshot."""


class SnapshotNotFoundError(CensusError, LookupError):
    """A stored snapshot name does not resolve to a file."""


class CaptureError(CensusError):
    """Memory accounting or live-object enumeration failed during capture."""


class WatchError(CensusError):
    """Base class for watch bookkeeping errors. State is unchanged when raised."""

    def __init__(self, type_key: str, message: str) -> None:
        super().__init__(message)
        self.type_key = type_key


class AlreadyWatchingError(WatchError):
    def __init__(self, type_key: str) -> None:
        super().__init__(type_key, f"Already watching '{type_key}'")


class NotWatchedError(WatchError):
    def __init__(self, type_key: str) -> None:
        super().__init__(type_key, f"'{type_key}' is not watched")


class AlertWatcherError(CensusError):
    """The alert loop was started while already running."""
