"""Value-range bucket classification shared by ingestion and retrieval."""

from __future__ import annotations

import math
from bisect import bisect_right
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from models.errors import InvalidValue, UnorderedBoundaries


@dataclass(frozen=True, slots=True)
class BucketInterval:
    """Half-open ``[lower, upper)`` interval; ``None`` marks an open end."""

    label: str
    lower: Optional[float]
    upper: Optional[float]

    def contains(self, value: float) -> bool:
        if self.lower is not None and value < self.lower:
            return False
        if self.upper is not None and value >= self.upper:
            return False
        return True


def validate_boundaries(boundaries: Iterable[float]) -> Tuple[float, ...]:
    """Return ``boundaries`` as a tuple of floats or raise ``UnorderedBoundaries``."""
    try:
        values = tuple(float(bound) for bound in boundaries)
    except (TypeError, ValueError) as exc:
        raise UnorderedBoundaries(f"Boundaries must be numeric: {exc}") from exc
    if not values:
        raise UnorderedBoundaries("At least one boundary is required.")
    if not all(math.isfinite(bound) for bound in values):
        raise UnorderedBoundaries(f"Boundaries must be finite, got {list(values)!r}.")
    for lower, upper in zip(values, values[1:]):
        if lower >= upper:
            raise UnorderedBoundaries(
                f"Boundaries must be strictly increasing, got {lower!r} before {upper!r}."
            )
    return values


def format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else repr(float(bound))


def default_labels(boundaries: Sequence[float]) -> List[str]:
    labels = [f"lt_{format_bound(bound)}" for bound in boundaries]
    labels.append(f"gte_{format_bound(boundaries[-1])}")
    return labels


class BucketClassifier:
    """Map values onto the ordered intervals defined by a boundary set.

    ``N`` boundaries define ``N + 1`` intervals. The first is open below, the
    last open above, and every interval includes its lower bound, so a value
    equal to a boundary lands in the interval starting there.
    """

    def __init__(self, boundaries: Iterable[float], labels: Optional[Sequence[str]] = None) -> None:
        self.boundaries = validate_boundaries(boundaries)
        if labels is None:
            self._labels = tuple(default_labels(self.boundaries))
        else:
            if len(labels) != len(self.boundaries) + 1:
                raise ValueError(
                    f"Expected {len(self.boundaries) + 1} labels for "
                    f"{len(self.boundaries)} boundaries, got {len(labels)}."
                )
            if len(set(labels)) != len(labels):
                raise ValueError("Bucket labels must be unique.")
            self._labels = tuple(labels)

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    def classify(self, value: float) -> str:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise InvalidValue(value)
        if not math.isfinite(value):
            raise InvalidValue(value)
        return self._labels[bisect_right(self.boundaries, value)]

    def intervals(self) -> List[BucketInterval]:
        lowers: List[Optional[float]] = [None, *self.boundaries]
        uppers: List[Optional[float]] = [*self.boundaries, None]
        return [
            BucketInterval(label=label, lower=lower, upper=upper)
            for label, lower, upper in zip(self._labels, lowers, uppers)
        ]

    def interval_for(self, label: str) -> BucketInterval:
        for interval in self.intervals():
            if interval.label == label:
                return interval
        raise KeyError(f"Unknown bucket label {label!r}.")

    def __repr__(self) -> str:
        return f"BucketClassifier(boundaries={list(self.boundaries)!r})"


def classify(value: float, boundaries: Iterable[float]) -> str:
    """One-off classification against ``boundaries`` with default labels."""
    return BucketClassifier(boundaries).classify(value)
