"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

OVERFLOW_LABEL = "other"


@dataclass(frozen=True, slots=True)
class Reading:
    """A single value pulled from a sensor.

    ``observed_at`` stays ``None`` until the reading is consumed for ingestion.
    """

    value: float
    location: Optional[str]
    observed_at: Optional[datetime] = None


class Record(BaseModel):
    """The stored form of a reading, one document in a partition."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    location: Optional[str] = None
    value: float
    observed_at: datetime

    @classmethod
    def from_reading(cls, reading: Reading) -> "Record":
        if reading.observed_at is None:
            raise ValueError("Reading has not been stamped with an observation time.")
        return cls(
            location=reading.location,
            value=reading.value,
            observed_at=reading.observed_at,
        )

    def to_document(self) -> Dict[str, Any]:
        """Document for ``insert_one``.

        ``location`` is always written, as ``None`` when absent. ``_id`` is only
        present once the store has assigned one.
        """
        exclude = {"id"} if self.id is None else set()
        return self.model_dump(by_alias=True, exclude=exclude)


class AggregationGroup(BaseModel):
    """One group produced by re-bucketing a partition."""

    label: str
    lower: Optional[float] = None
    upper: Optional[float] = None
    count: int = Field(..., ge=0)
    documents: List[Record] = Field(default_factory=list)

    @property
    def is_overflow(self) -> bool:
        return self.label == OVERFLOW_LABEL
