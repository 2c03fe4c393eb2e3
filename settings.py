from __future__ import annotations

import math
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple


_STORE_NAME_ENV = "BUCKET_STORE_NAME"
_STORE_PATH_ENV = "BUCKET_STORE_PERSISTENCE_PATH"
_PARTITION_PREFIX_ENV = "BUCKET_PARTITION_PREFIX"
_BOUNDARIES_ENV = "BUCKET_INGEST_BOUNDARIES"
_LOCATION_ENV = "SENSOR_LOCATION"
_VALUE_MIN_ENV = "SENSOR_VALUE_MIN"
_VALUE_MAX_ENV = "SENSOR_VALUE_MAX"
_EMIT_INTERVAL_ENV = "SENSOR_EMIT_INTERVAL"
_MAX_COUNT_ENV = "INGEST_MAX_COUNT"
_WORKER_COUNT_ENV = "INGEST_WORKER_COUNT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_BOUNDARIES: Tuple[float, ...] = (0.0, 10.0, 20.0)


@dataclass(frozen=True)
class Settings:
    store_name: str
    store_persistence_path: Optional[str]
    partition_prefix: str
    ingest_boundaries: Tuple[float, ...]
    sensor_location: str
    value_min: float
    value_max: float
    emit_interval: float
    ingest_max_count: int
    ingest_workers: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_float(name: str, default: float, minimum: Optional[float] = None) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if not math.isfinite(parsed):
        return default
    if minimum is not None and parsed < minimum:
        return default
    return parsed


def _read_boundaries(default: Tuple[float, ...]) -> Tuple[float, ...]:
    """Parse a comma separated boundary list.

    Anything unparsable falls back to the default. Ordering is checked later
    by the classifier so a misordered list fails loudly at startup instead of
    being silently replaced here.
    """
    value = os.getenv(_BOUNDARIES_ENV)
    if value is None:
        return default
    parts = [part.strip() for part in value.split(",") if part.strip()]
    if not parts:
        return default
    try:
        return tuple(float(part) for part in parts)
    except ValueError:
        return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    value_min = _read_float(_VALUE_MIN_ENV, -20.0)
    value_max = _read_float(_VALUE_MAX_ENV, 40.0)
    if value_max <= value_min:
        value_min, value_max = -20.0, 40.0
    return Settings(
        store_name=_read_str_env(_STORE_NAME_ENV, "iot"),
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/bucket_store.json"),
        partition_prefix=_read_str_env(_PARTITION_PREFIX_ENV, "temp_"),
        ingest_boundaries=_read_boundaries(DEFAULT_BOUNDARIES),
        sensor_location=_read_str_env(_LOCATION_ENV, "laboratory"),
        value_min=value_min,
        value_max=value_max,
        emit_interval=_read_float(_EMIT_INTERVAL_ENV, 0.0, minimum=0.0),
        ingest_max_count=_read_positive_int(_MAX_COUNT_ENV, 50),
        ingest_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        log_level=_read_log_level("INFO"),
    )
