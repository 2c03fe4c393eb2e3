"""Route sensor readings into per-bucket partitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from threading import Event
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, Protocol

from models.errors import IngestionAborted, IngestionFailed, InvalidValue, StorageError
from models.records import Reading, Record
from services.classifier import BucketClassifier

logger = logging.getLogger(__name__)


class DocumentWriter(Protocol):
    def insert_one(self, partition: str, document: Mapping[str, Any]) -> str:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestionSummary:
    """Progress of one ingestion run."""

    inserted_count: int = 0
    skipped_count: int = 0
    per_partition: Dict[str, int] = field(default_factory=dict)
    cancelled: bool = False


class IngestionRouter:
    """Consumes readings and writes one record per reading into its bucket partition."""

    def __init__(
        self,
        store: DocumentWriter,
        classifier: BucketClassifier,
        partition_prefix: str = "temp_",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.partition_prefix = partition_prefix
        self._clock = clock or _utcnow

    def partition_for(self, value: float) -> str:
        return f"{self.partition_prefix}{self.classifier.classify(value)}"

    def partition_names(self) -> list[str]:
        return [f"{self.partition_prefix}{label}" for label in self.classifier.labels]

    def ingest(
        self,
        readings: Iterable[Reading],
        max_count: int,
        cancel_event: Optional[Event] = None,
    ) -> IngestionSummary:
        """Insert up to ``max_count`` records pulled from ``readings``.

        Stops early when ``readings`` ends or ``cancel_event`` is set. Invalid
        values are skipped and counted. A storage failure raises
        ``IngestionAborted`` and any other failure raises ``IngestionFailed``,
        both carrying the summary up to that point.
        """
        if max_count < 0:
            raise ValueError("max_count must not be negative.")

        summary = IngestionSummary()
        if max_count == 0:
            return summary

        try:
            self._consume(iter(readings), max_count, summary, cancel_event)
        except IngestionAborted:
            raise
        except Exception as exc:
            logger.error(
                "Ingestion failed",
                extra={
                    "inserted_count": summary.inserted_count,
                    "skipped_count": summary.skipped_count,
                    "reason": str(exc),
                },
            )
            raise IngestionFailed(summary, exc) from exc

        logger.info(
            "Ingestion finished",
            extra={
                "inserted_count": summary.inserted_count,
                "skipped_count": summary.skipped_count,
                "status": "cancelled" if summary.cancelled else "completed",
            },
        )
        return summary

    def _consume(
        self,
        iterator: Iterator[Reading],
        max_count: int,
        summary: IngestionSummary,
        cancel_event: Optional[Event],
    ) -> None:
        while summary.inserted_count < max_count:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                return
            try:
                reading = next(iterator)
            except StopIteration:
                return

            stamped = replace(reading, observed_at=self._clock())
            try:
                partition = self.partition_for(stamped.value)
            except InvalidValue as exc:
                summary.skipped_count += 1
                logger.warning(
                    "Skipping reading",
                    extra={
                        "location": stamped.location,
                        "value": stamped.value,
                        "reason": str(exc),
                        "skipped_count": summary.skipped_count,
                    },
                )
                continue

            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                return

            record = Record.from_reading(stamped)
            try:
                self.store.insert_one(partition, record.to_document())
            except StorageError as exc:
                logger.error(
                    "Insert failed, aborting ingestion",
                    extra={
                        "location": stamped.location,
                        "partition": partition,
                        "inserted_count": summary.inserted_count,
                        "reason": str(exc),
                    },
                )
                raise IngestionAborted(summary, exc) from exc

            summary.inserted_count += 1
            summary.per_partition[partition] = summary.per_partition.get(partition, 0) + 1
            logger.debug(
                "Inserted reading",
                extra={"partition": partition, "value": stamped.value},
            )
