"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class SessionState(str, Enum):
    """Lifecycle states of an ingestion session."""

    pending = "pending"
    running = "running"
    completed = "completed"
    cancelled = "cancelled"
    failed = "failed"


class SessionStatus(BaseModel):
    """Progress record for one ingestion session."""

    session_id: str
    location: str
    max_count: int = Field(..., ge=1)
    state: SessionState
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    inserted_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    per_partition: Dict[str, int] = Field(default_factory=dict)
    error: Optional[str] = None


class SessionRequest(BaseModel):
    location: Optional[str] = Field(
        default=None, min_length=1, description="Tag stored on every record. Defaults to SENSOR_LOCATION."
    )
    max_count: Optional[int] = Field(
        default=None, ge=1, description="Records to insert before stopping. Defaults to INGEST_MAX_COUNT."
    )


class SessionCreatedResponse(BaseModel):
    """Immediate response after scheduling a session."""

    session_id: str = Field(..., description="Generated identifier for the session.")


class AggregateRequest(BaseModel):
    boundaries: List[float] = Field(..., min_length=2)
    result_limit: int = Field(default=4, ge=1)
    min_value: float = Field(default=0.0, description="Only values strictly above this are grouped.")


class ClassificationResponse(BaseModel):
    value: float
    label: str
    partition: str
