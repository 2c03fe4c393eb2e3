from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from threading import Event
from typing import Iterator

import pytest

from datastore.document_store import MockDocumentStore
from models.errors import IngestionAborted, IngestionFailed, StorageError
from models.records import Reading
from services.classifier import BucketClassifier
from services.ingestion import IngestionRouter
from services.source import SensorSource


def _router(store: MockDocumentStore, **kwargs) -> IngestionRouter:
    return IngestionRouter(store, BucketClassifier([0, 10, 20]), **kwargs)


def _readings(*values: float, location: str = "lab") -> list[Reading]:
    return [Reading(value=value, location=location) for value in values]


class _FailingStore(MockDocumentStore):
    def __init__(self, fail_after: int) -> None:
        super().__init__(name="failing")
        self.fail_after = fail_after
        self.calls = 0

    def insert_one(self, partition, document):
        self.calls += 1
        if self.calls > self.fail_after:
            raise StorageError("connection reset")
        return super().insert_one(partition, document)


def test_ingest_routes_each_reading_to_its_bucket_partition() -> None:
    store = MockDocumentStore(name="test")
    router = _router(store)

    summary = router.ingest(_readings(-5, 0, 19.999, 20, 35), max_count=10)

    assert summary.inserted_count == 5
    assert summary.per_partition == {
        "temp_lt_0": 1,
        "temp_lt_10": 1,
        "temp_lt_20": 1,
        "temp_gte_20": 2,
    }
    assert [doc["value"] for doc in store.find("temp_gte_20")] == [20, 35]
    assert store.list_partitions() == ["temp_gte_20", "temp_lt_0", "temp_lt_10", "temp_lt_20"]


def test_ingest_writes_record_shape_with_consumption_timestamp() -> None:
    store = MockDocumentStore(name="test")
    stamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    router = _router(store, partition_prefix="sensor_", clock=lambda: stamp)

    router.ingest([Reading(value=3.0, location=None)], max_count=1)

    (document,) = store.find("sensor_lt_10")
    assert set(document) == {"_id", "location", "value", "observed_at"}
    assert document["location"] is None
    assert document["observed_at"] == stamp


def test_ingest_stops_at_max_count_and_preserves_order() -> None:
    store = MockDocumentStore(name="test")
    ticks = iter(datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=i) for i in range(100))
    router = _router(store, clock=lambda: next(ticks))

    summary = router.ingest(_readings(21, 22, 23, 24, 25), max_count=3)

    assert summary.inserted_count == 3
    assert [doc["value"] for doc in store.find("temp_gte_20")] == [21, 22, 23]


def test_ingest_fifty_from_live_source_then_producer_stops() -> None:
    store = MockDocumentStore(name="test")
    router = _router(store)
    source = SensorSource("laboratory", seed=11)

    with source.start() as stream:
        summary = router.ingest(stream, max_count=50)
    assert stream.producer_alive is False

    assert summary.inserted_count == 50
    assert sum(store.count(name) for name in store.list_partitions()) == 50
    assert sum(summary.per_partition.values()) == 50


def test_invalid_values_are_skipped_and_logged(caplog) -> None:
    store = MockDocumentStore(name="test")
    router = _router(store)

    with caplog.at_level(logging.WARNING):
        summary = router.ingest(_readings(1.0, math.nan, math.inf, 2.0), max_count=10)

    assert summary.inserted_count == 2
    assert summary.skipped_count == 2
    records = [r for r in caplog.records if r.name == "services.ingestion"]
    assert any("Skipping reading" in r.getMessage() for r in records)
    assert all(getattr(r, "location", None) == "lab" for r in records)


def test_skipped_values_do_not_count_toward_max() -> None:
    store = MockDocumentStore(name="test")
    router = _router(store)

    summary = router.ingest(_readings(math.nan, 1.0, math.nan, 2.0, 3.0), max_count=2)

    assert summary.inserted_count == 2
    assert summary.skipped_count == 2


def test_storage_failure_aborts_with_partial_count() -> None:
    store = _FailingStore(fail_after=2)
    router = _router(store)

    with pytest.raises(IngestionAborted) as excinfo:
        router.ingest(_readings(1, 2, 3, 4), max_count=10)

    assert excinfo.value.inserted_count == 2
    assert isinstance(excinfo.value.__cause__, StorageError)
    assert "connection reset" in str(excinfo.value)
    assert store.calls == 3


def test_source_failure_raises_with_partial_summary() -> None:
    store = MockDocumentStore(name="test")
    router = _router(store)

    def readings() -> Iterator[Reading]:
        yield Reading(value=1.0, location="lab")
        yield Reading(value=float("nan"), location="lab")
        yield Reading(value=25.0, location="lab")
        raise RuntimeError("sensor unplugged")

    with pytest.raises(IngestionFailed) as excinfo:
        router.ingest(readings(), max_count=10)

    summary = excinfo.value.summary
    assert summary.inserted_count == 2
    assert summary.skipped_count == 1
    assert summary.per_partition == {"temp_lt_10": 1, "temp_gte_20": 1}
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert not isinstance(excinfo.value, StorageError)


def test_cancel_event_stops_before_next_write() -> None:
    store = MockDocumentStore(name="test")
    router = _router(store)
    cancel = Event()

    def readings() -> Iterator[Reading]:
        yield Reading(value=1.0, location="lab")
        cancel.set()
        yield Reading(value=2.0, location="lab")

    summary = router.ingest(readings(), max_count=10, cancel_event=cancel)

    assert summary.cancelled is True
    assert summary.inserted_count == 1


def test_zero_and_negative_max_count() -> None:
    router = _router(MockDocumentStore(name="test"))

    assert router.ingest(_readings(1.0), max_count=0).inserted_count == 0
    with pytest.raises(ValueError):
        router.ingest(_readings(1.0), max_count=-1)


def test_partition_names_follow_prefix_and_labels() -> None:
    router = _router(MockDocumentStore(name="test"))

    assert router.partition_names() == ["temp_lt_0", "temp_lt_10", "temp_lt_20", "temp_gte_20"]
    assert router.partition_for(10) == "temp_lt_20"
