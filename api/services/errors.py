"""Exceptions raised by the rule sync services.

Per-file failures (FetchError, StoreError during upsert) are absorbed by the
indexer and counted. The rest abort the run they occur in.
"""


class RuleSyncError(Exception):
    """Base class for sync service errors."""


class ConfigurationError(RuleSyncError):
    """The document store is not configured or its indices cannot be created."""


class SourceError(RuleSyncError):
    """The rule repository could not be read."""


class FetchError(SourceError):
    """One rule file could not be downloaded."""


class EnumerationError(SourceError):
    """One directory of the rule repository could not be listed."""


class StoreError(RuleSyncError):
    """A request to the document store failed."""


class EmptyResultError(RuleSyncError):
    """Enumeration found no rule files; the source is likely unreachable or misconfigured."""


class ConcurrentRunError(RuleSyncError):
    """A sync run is already in progress."""

    def __init__(self, progress: str):
        super().__init__(f"Sync already in progress ({progress})")
        self.progress = progress
