"""Exceptions of the vector sync engine.

Only SourceUnavailable and ConcurrentCycleRejected ever leave a sync cycle.
The other errors are raised and caught inside the engine and end up as
entries in SyncRunStats.errors.
"""


class SyncError(Exception):
    """Base class for all sync engine errors."""


class SourceUnavailable(SyncError):
    """The record source could not deliver a snapshot. The cycle is aborted before any tracker mutation."""


class ConcurrentCycleRejected(SyncError):
    """A cycle was requested while another one is still running."""


class IndexBatchFailure(SyncError):
    """An upsert or delete batch failed after exhausting its attempts.

    Attributes:
        operation (str): "upsert" or "delete".
        identities (list[str]): Record identities of the failed batch.
        attempts (int): Number of attempts made.
    """

    def __init__(self, message: str, operation: str, identities: list[str], attempts: int):
        super().__init__(message)
        self.operation = operation
        self.identities = identities
        self.attempts = attempts


class EmbeddingItemFailure(SyncError):
    """A single record could not be embedded. It stays untracked and is retried on the next cycle."""

    def __init__(self, message: str, identity: str | None = None):
        super().__init__(message)
        self.identity = identity


class TrackerCorruption(SyncError):
    """The persisted tracker document could not be decoded."""
