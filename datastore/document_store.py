from __future__ import annotations

import copy
import json
import math
from bisect import bisect_right
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from models.errors import StorageError
from settings import get_settings

Document = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]

_COMPARISONS = {
    "$gt": lambda left, right: left > right,
    "$gte": lambda left, right: left >= right,
    "$lt": lambda left, right: left < right,
    "$lte": lambda left, right: left <= right,
    "$eq": lambda left, right: left == right,
    "$ne": lambda left, right: left != right,
}


class MockDocumentStore:
    """In-process document store with named partitions.

    Mirrors the subset of a document database the bucket services rely on:
    single-document inserts, filtered/sorted finds and a small aggregation
    pipeline (``$match``, ``$sort``, ``$limit``, ``$bucket``).
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._partitions: Dict[str, List[Document]] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def insert_one(self, partition: str, document: Mapping[str, Any]) -> str:
        if not partition:
            raise StorageError("Partition name must not be empty.")
        stored = copy.deepcopy(dict(document))
        doc_id = stored.get("_id") or uuid4().hex
        stored["_id"] = doc_id
        with self._lock:
            documents = self._partitions.setdefault(partition, [])
            documents.append(stored)
            try:
                self._persist()
            except StorageError:
                documents.pop()
                raise
        return doc_id

    def find(
        self,
        partition: str,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with self._lock:
            documents = [copy.deepcopy(doc) for doc in self._partitions.get(partition, [])]

        if filter:
            documents = [doc for doc in documents if _matches(doc, filter)]
        if sort:
            documents = _sorted(documents, sort)
        if limit is not None:
            if limit < 0:
                raise StorageError(f"Invalid limit {limit!r}.")
            if limit:
                documents = documents[:limit]
        return documents

    def aggregate(self, partition: str, pipeline: Sequence[Mapping[str, Any]]) -> List[Document]:
        with self._lock:
            documents = [copy.deepcopy(doc) for doc in self._partitions.get(partition, [])]

        for stage in pipeline:
            if len(stage) != 1:
                raise StorageError(f"Pipeline stage must have exactly one operator: {stage!r}")
            (operator, spec), = stage.items()
            if operator == "$match":
                documents = [doc for doc in documents if _matches(doc, spec)]
            elif operator == "$sort":
                documents = _sorted(documents, list(spec.items()))
            elif operator == "$limit":
                if not isinstance(spec, int) or isinstance(spec, bool) or spec < 1:
                    raise StorageError(f"$limit must be a positive integer, got {spec!r}.")
                documents = documents[:spec]
            elif operator == "$bucket":
                documents = _bucket(documents, spec)
            else:
                raise StorageError(f"Unsupported pipeline stage {operator!r}.")
        return documents

    def count(self, partition: str) -> int:
        with self._lock:
            return len(self._partitions.get(partition, []))

    def list_partitions(self) -> List[str]:
        with self._lock:
            return sorted(name for name, docs in self._partitions.items() if docs)

    def drop(self, partition: str) -> None:
        with self._lock:
            removed = self._partitions.pop(partition, None)
            try:
                self._persist()
            except StorageError:
                if removed is not None:
                    self._partitions[partition] = removed
                raise

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            name: [_encode(doc) for doc in docs] for name, docs in self._partitions.items()
        }
        try:
            self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Failed to persist store {self.name!r}: {exc}") from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for name, docs in data.items():
            self._partitions[name] = [_decode(doc) for doc in docs]


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {"$date": value.isoformat()}
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {"$date"}:
            return datetime.fromisoformat(value["$date"])
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


def _matches(document: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    for field, condition in filter.items():
        if field.startswith("$"):
            raise StorageError(f"Unsupported top-level filter operator {field!r}.")
        actual = document.get(field)
        if isinstance(condition, Mapping) and any(key.startswith("$") for key in condition):
            for operator, expected in condition.items():
                compare = _COMPARISONS.get(operator)
                if compare is None:
                    raise StorageError(f"Unsupported filter operator {operator!r}.")
                try:
                    if actual is None or not compare(actual, expected):
                        return False
                except TypeError:
                    return False
        elif actual != condition:
            return False
    return True


def _sort_key(document: Mapping[str, Any], field: str) -> Tuple[int, Any]:
    value = document.get(field)
    if value is None:
        return (0, 0)
    return (1, value)


def _sorted(documents: List[Document], sort: SortSpec) -> List[Document]:
    result = list(documents)
    try:
        for field, direction in reversed(list(sort)):
            if direction not in (1, -1):
                raise StorageError(f"Sort direction for {field!r} must be 1 or -1.")
            result.sort(key=lambda doc: _sort_key(doc, field), reverse=direction == -1)
    except TypeError as exc:
        raise StorageError(f"Cannot sort documents: {exc}") from exc
    return result


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not (
        isinstance(value, float) and math.isnan(value)
    )


def _field_path(expression: Any, stage: str) -> str:
    if not isinstance(expression, str) or not expression.startswith("$") or expression.startswith("$$"):
        raise StorageError(f"{stage} expects a '$field' path, got {expression!r}.")
    return expression[1:]


def _accumulate(documents: Iterable[Document], accumulator: Mapping[str, Any]) -> Any:
    if len(accumulator) != 1:
        raise StorageError(f"Accumulator must have exactly one operator: {accumulator!r}")
    (operator, argument), = accumulator.items()
    if operator == "$sum":
        if _is_number(argument):
            return sum(argument for _ in documents)
        field = _field_path(argument, "$sum")
        return sum(doc[field] for doc in documents if _is_number(doc.get(field)))
    if operator == "$push":
        if argument == "$$ROOT":
            return [copy.deepcopy(doc) for doc in documents]
        field = _field_path(argument, "$push")
        return [doc.get(field) for doc in documents]
    raise StorageError(f"Unsupported accumulator {operator!r}.")


def _bucket(documents: List[Document], spec: Mapping[str, Any]) -> List[Document]:
    field = _field_path(spec.get("groupBy"), "$bucket.groupBy")
    boundaries = spec.get("boundaries")
    if (
        not isinstance(boundaries, (list, tuple))
        or len(boundaries) < 2
        or not all(_is_number(bound) for bound in boundaries)
        or any(lower >= upper for lower, upper in zip(boundaries, boundaries[1:]))
    ):
        raise StorageError(
            f"$bucket boundaries must be at least two ascending numbers, got {boundaries!r}."
        )
    has_default = "default" in spec
    output = spec.get("output") or {"count": {"$sum": 1}}

    groups: Dict[int, List[Document]] = {}
    overflow: List[Document] = []
    for doc in documents:
        value = doc.get(field)
        if _is_number(value) and boundaries[0] <= value < boundaries[-1]:
            index = bisect_right(boundaries, value) - 1
            groups.setdefault(index, []).append(doc)
        elif has_default:
            overflow.append(doc)
        else:
            raise StorageError(
                f"$bucket value {value!r} falls outside boundaries and no default is set."
            )

    results: List[Document] = []
    for index in sorted(groups):
        members = groups[index]
        group: Document = {"_id": boundaries[index]}
        group.update({name: _accumulate(members, acc) for name, acc in output.items()})
        results.append(group)
    if overflow:
        group = {"_id": spec["default"]}
        group.update({name: _accumulate(overflow, acc) for name, acc in output.items()})
        results.append(group)
    return results


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockDocumentStore:
    settings = get_settings()
    store_name = settings.store_name if name is None else name
    store_path = settings.store_persistence_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return MockDocumentStore(name=store_name, persistence_path=persistence)
