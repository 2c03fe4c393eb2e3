"""Read paths over bucket partitions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from models.records import OVERFLOW_LABEL, AggregationGroup, Record
from services.classifier import format_bound, validate_boundaries

logger = logging.getLogger(__name__)


class DocumentReader(Protocol):
    def find(
        self,
        partition: str,
        filter: Optional[Mapping[str, Any]] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    def aggregate(self, partition: str, pipeline: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        ...

    def list_partitions(self) -> List[str]:
        ...

    def count(self, partition: str) -> int:
        ...


def range_label(lower: float, upper: float) -> str:
    return f"[{format_bound(lower)}, {format_bound(upper)})"


def build_bucket_pipeline(
    boundaries: Sequence[float],
    result_limit: int,
    min_value_filter: float,
) -> List[Dict[str, Any]]:
    """Filter on ``value``, re-bucket by ``boundaries``, then cap the group count."""
    return [
        {"$match": {"value": {"$gt": min_value_filter}}},
        {
            "$bucket": {
                "groupBy": "$value",
                "boundaries": list(boundaries),
                "default": OVERFLOW_LABEL,
                "output": {
                    "count": {"$sum": 1},
                    "documents": {"$push": "$$ROOT"},
                },
            }
        },
        {"$limit": result_limit},
    ]


class RetrievalService:
    """Aggregation and quick-look queries against the document store."""

    def __init__(self, store: DocumentReader) -> None:
        self.store = store

    def aggregate(
        self,
        partition: str,
        boundaries: Iterable[float],
        result_limit: int,
        min_value_filter: float,
    ) -> List[AggregationGroup]:
        bounds = validate_boundaries(boundaries)
        if len(bounds) < 2:
            raise ValueError("Aggregation needs at least two boundaries to form a range.")
        if result_limit < 1:
            raise ValueError("result_limit must be at least 1.")

        pipeline = build_bucket_pipeline(bounds, result_limit, min_value_filter)
        raw_groups = self.store.aggregate(partition, pipeline)

        uppers = dict(zip(bounds, bounds[1:]))
        groups: List[AggregationGroup] = []
        for raw in raw_groups:
            key = raw["_id"]
            documents = [Record.model_validate(doc) for doc in raw.get("documents", [])]
            if key == OVERFLOW_LABEL:
                groups.append(
                    AggregationGroup(label=OVERFLOW_LABEL, count=raw["count"], documents=documents)
                )
                continue
            lower = float(key)
            upper = uppers[lower]
            groups.append(
                AggregationGroup(
                    label=range_label(lower, upper),
                    lower=lower,
                    upper=upper,
                    count=raw["count"],
                    documents=documents,
                )
            )

        logger.debug("Aggregated partition into %d groups", len(groups), extra={"partition": partition})
        return groups

    def latest(self, partition: str, limit: int = 10) -> List[Record]:
        """Newest ``limit`` records of ``partition`` by observation time."""
        if limit < 1:
            raise ValueError("limit must be at least 1.")
        documents = self.store.find(partition, sort=[("observed_at", -1)], limit=limit)
        return [Record.model_validate(doc) for doc in documents]

    def partitions(self) -> Dict[str, int]:
        return {name: self.store.count(name) for name in self.store.list_partitions()}
