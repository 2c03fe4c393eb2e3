"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    AggregateRequest,
    ClassificationResponse,
    SessionCreatedResponse,
    SessionRequest,
    SessionStatus,
)
from datastore.document_store import build_default_store
from models.errors import InvalidValue, StorageError, UnorderedBoundaries
from models.records import AggregationGroup, Record
from services.retrieval import RetrievalService
from services.sessions import SessionManager, build_default_session_manager
from settings import get_settings

router = APIRouter()


def get_sessions() -> SessionManager:
    return build_default_session_manager()


def get_retrieval() -> RetrievalService:
    return RetrievalService(build_default_store())


def _storage_unavailable(exc: StorageError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


@router.post(
    "/sessions",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SessionCreatedResponse,
    summary="Start ingesting readings from a simulated sensor.",
)
async def start_session(
    request: SessionRequest,
    sessions: SessionManager = Depends(get_sessions),
) -> SessionCreatedResponse:
    settings = get_settings()
    location = request.location or settings.sensor_location
    max_count = request.max_count or settings.ingest_max_count
    try:
        session_id = sessions.start_session(location, max_count)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return SessionCreatedResponse(session_id=session_id)


@router.get(
    "/sessions",
    response_model=List[SessionStatus],
    summary="List ingestion sessions, newest first.",
)
async def list_sessions(
    sessions: SessionManager = Depends(get_sessions),
) -> List[SessionStatus]:
    return sessions.list_sessions()


@router.get(
    "/sessions/{session_id}",
    response_model=SessionStatus,
    summary="Fetch progress for an ingestion session.",
)
async def get_session(
    session_id: str,
    sessions: SessionManager = Depends(get_sessions),
) -> SessionStatus:
    try:
        return sessions.fetch_session(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.delete(
    "/sessions/{session_id}",
    response_model=SessionStatus,
    summary="Ask a running session to stop.",
)
async def cancel_session(
    session_id: str,
    sessions: SessionManager = Depends(get_sessions),
) -> SessionStatus:
    try:
        return sessions.cancel_session(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get(
    "/partitions",
    response_model=Dict[str, int],
    summary="Record counts per non-empty partition.",
)
async def list_partitions(
    retrieval: RetrievalService = Depends(get_retrieval),
) -> Dict[str, int]:
    try:
        return retrieval.partitions()
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/partitions/{partition}/latest",
    response_model=List[Record],
    response_model_by_alias=True,
    summary="Most recent records in a partition.",
)
async def latest_records(
    partition: str,
    limit: int = Query(10, ge=1, le=1000),
    retrieval: RetrievalService = Depends(get_retrieval),
) -> List[Record]:
    try:
        return retrieval.latest(partition, limit)
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc


@router.post(
    "/partitions/{partition}/aggregate",
    response_model=List[AggregationGroup],
    summary="Re-bucket a partition by caller-supplied boundaries.",
)
async def aggregate_partition(
    partition: str,
    request: AggregateRequest,
    retrieval: RetrievalService = Depends(get_retrieval),
) -> List[AggregationGroup]:
    try:
        return retrieval.aggregate(
            partition,
            request.boundaries,
            result_limit=request.result_limit,
            min_value_filter=request.min_value,
        )
    except UnorderedBoundaries as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    except StorageError as exc:
        raise _storage_unavailable(exc) from exc


@router.get(
    "/classify",
    response_model=ClassificationResponse,
    summary="Show which ingestion partition a value would be written to.",
)
async def classify_value(
    value: float,
    sessions: SessionManager = Depends(get_sessions),
) -> ClassificationResponse:
    try:
        partition = sessions.router.partition_for(value)
    except InvalidValue as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc
    label = partition[len(sessions.router.partition_prefix):]
    return ClassificationResponse(value=value, label=label, partition=partition)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
