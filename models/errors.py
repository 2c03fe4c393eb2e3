"""Error types raised by the bucket store services."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.ingestion import IngestionSummary


class BucketStoreError(Exception):
    """Base class for every error raised by this package."""


class InvalidValue(BucketStoreError, ValueError):
    """A reading value cannot be classified (NaN or infinite)."""

    def __init__(self, value: float) -> None:
        super().__init__(f"Cannot classify non-finite value {value!r}.")
        self.value = value


class UnorderedBoundaries(BucketStoreError, ValueError):
    """A boundary set is empty, non-finite or not strictly increasing."""


class StorageError(BucketStoreError):
    """Any failure reported by the document store."""


class IngestionAborted(StorageError):
    """A write failed mid-ingestion; ``summary`` holds the progress made."""

    def __init__(self, summary: "IngestionSummary", cause: BaseException) -> None:
        super().__init__(
            f"Ingestion stopped after {summary.inserted_count} inserted records: {cause}"
        )
        self.summary = summary
        self.cause = cause

    @property
    def inserted_count(self) -> int:
        return self.summary.inserted_count


class IngestionFailed(BucketStoreError):
    """The reading source or router broke mid-ingestion; ``summary`` holds the progress made."""

    def __init__(self, summary: "IngestionSummary", cause: BaseException) -> None:
        super().__init__(
            f"Ingestion failed after {summary.inserted_count} inserted records: {cause}"
        )
        self.summary = summary
        self.cause = cause

    @property
    def inserted_count(self) -> int:
        return self.summary.inserted_count
