"""
Error taxonomy for the ingestion pipeline.
Each failure class maps to one pipeline stage so results can be classified.
"""
from typing import Optional


class IngestError(Exception):
    """Base class for all ingestion failures."""


class FetchError(IngestError):
    """Download failed after the backoff policy gave up."""

    def __init__(self, url: str, message: str, attempts: int = 0):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.attempts = attempts


class PermanentFetchError(FetchError):
    """Download failed with a status that will never succeed on retry."""

    def __init__(self, url: str, status_code: int):
        super().__init__(url, f"permanent HTTP status {status_code}", attempts=1)
        self.status_code = status_code


class ArchiveError(IngestError):
    """Top-level container could not be opened."""


class PersistenceError(IngestError):
    """A chunk could not be written to storage."""

    def __init__(self, message: str, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.chunk_index = chunk_index
        # Rows from earlier chunks of the same write that stayed committed
        self.committed = 0


class DuplicateKeyError(PersistenceError):
    """A chunk violated the decisions primary key (SQLSTATE 23505)."""
