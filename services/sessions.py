"""Concurrent ingestion sessions, one producer/consumer pair each."""

from __future__ import annotations

import logging
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from functools import lru_cache
from threading import Event, Lock
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from app.schemas import SessionState, SessionStatus
from datastore.document_store import MockDocumentStore, build_default_store
from models.errors import IngestionAborted, IngestionFailed
from services.classifier import BucketClassifier
from services.ingestion import IngestionRouter, IngestionSummary
from services.source import SensorSource
from settings import get_settings

logger = logging.getLogger(__name__)

SourceFactory = Callable[[str], SensorSource]


def _default_source_factory(location: str) -> SensorSource:
    settings = get_settings()
    return SensorSource(
        location,
        low=settings.value_min,
        high=settings.value_max,
        interval=settings.emit_interval,
    )


class SessionManager:
    """Runs ingestion sessions on a worker pool and tracks their status."""

    def __init__(
        self,
        store: MockDocumentStore,
        classifier: BucketClassifier,
        workers: int = 4,
        partition_prefix: str = "temp_",
        source_factory: Optional[SourceFactory] = None,
    ) -> None:
        self.store = store
        self.router = IngestionRouter(store, classifier, partition_prefix=partition_prefix)
        self.source_factory = source_factory or _default_source_factory
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest")
        self._sessions: Dict[str, SessionStatus] = {}
        self._cancel_events: Dict[str, Event] = {}
        self._futures: Dict[str, Future[None]] = {}
        self._lock = Lock()

    def start_session(self, location: str, max_count: int) -> str:
        """Register a session and schedule it on the worker pool."""
        if max_count < 1:
            raise ValueError("max_count must be at least 1.")
        source = self.source_factory(location)

        session_id = str(uuid4())
        status = SessionStatus(
            session_id=session_id,
            location=location,
            max_count=max_count,
            state=SessionState.pending,
            created_at=datetime.now(timezone.utc),
        )
        cancel_event = Event()
        with self._lock:
            self._sessions[session_id] = status
            self._cancel_events[session_id] = cancel_event

        future = self.executor.submit(
            self._run_session, session_id, source, max_count, cancel_event
        )
        with self._lock:
            self._futures[session_id] = future
        future.add_done_callback(lambda _f, sid=session_id: self._clear_future(sid))
        logger.info("Session scheduled", extra={"session_id": session_id, "location": location})
        return session_id

    def fetch_session(self, session_id: str) -> SessionStatus:
        with self._lock:
            status = self._sessions.get(session_id)
            if status is None:
                raise KeyError(f"Ingestion session {session_id!r} not found.")
            return status.model_copy(deep=True)

    def list_sessions(self) -> List[SessionStatus]:
        with self._lock:
            items = [status.model_copy(deep=True) for status in self._sessions.values()]
        return sorted(items, key=lambda status: status.created_at, reverse=True)

    def cancel_session(self, session_id: str) -> SessionStatus:
        with self._lock:
            event = self._cancel_events.get(session_id)
            if event is None:
                raise KeyError(f"Ingestion session {session_id!r} not found.")
            event.set()
            status = self._sessions[session_id]
            if status.state == SessionState.pending:
                self._sessions[session_id] = status.model_copy(
                    update={
                        "state": SessionState.cancelled,
                        "finished_at": datetime.now(timezone.utc),
                    }
                )
        logger.info("Session cancel requested", extra={"session_id": session_id})
        return self.fetch_session(session_id)

    def wait(self, session_id: str, timeout: Optional[float] = None) -> SessionStatus:
        """Block until the session's worker finishes, then return its status."""
        with self._lock:
            future = self._futures.get(session_id)
        if future is not None:
            try:
                future.result(timeout=timeout)
            except CancelledError:
                pass
        return self.fetch_session(session_id)

    def shutdown(self) -> None:
        """Cancel running sessions, drop queued ones and release the worker pool."""
        with self._lock:
            for event in self._cancel_events.values():
                event.set()
            queued = list(self._futures.items())
        # Futures that never started will not reach _run_session.
        for session_id, future in queued:
            if future.cancel():
                self._finish(session_id, SessionState.cancelled, IngestionSummary())
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _clear_future(self, session_id: str) -> None:
        with self._lock:
            self._futures.pop(session_id, None)

    def _update(self, session_id: str, **changes: object) -> None:
        with self._lock:
            current = self._sessions[session_id]
            self._sessions[session_id] = current.model_copy(update=changes)

    def _finish(
        self,
        session_id: str,
        state: SessionState,
        summary: IngestionSummary,
        error: Optional[str] = None,
    ) -> None:
        self._update(
            session_id,
            state=state,
            inserted_count=summary.inserted_count,
            skipped_count=summary.skipped_count,
            per_partition=dict(summary.per_partition),
            finished_at=datetime.now(timezone.utc),
            error=error,
        )
        logger.info(
            "Session finished",
            extra={
                "session_id": session_id,
                "status": state.value,
                "inserted_count": summary.inserted_count,
                "skipped_count": summary.skipped_count,
            },
        )

    def _run_session(
        self,
        session_id: str,
        source: SensorSource,
        max_count: int,
        cancel_event: Event,
    ) -> None:
        if cancel_event.is_set():
            self._finish(session_id, SessionState.cancelled, IngestionSummary())
            return
        self._update(session_id, state=SessionState.running, started_at=datetime.now(timezone.utc))

        with source.start() as stream:
            try:
                summary = self.router.ingest(stream, max_count, cancel_event=cancel_event)
            except (IngestionAborted, IngestionFailed) as exc:
                self._finish(session_id, SessionState.failed, exc.summary, error=str(exc.cause))
                return
            except Exception as exc:
                logger.exception("Session crashed", extra={"session_id": session_id})
                self._finish(session_id, SessionState.failed, IngestionSummary(), error=str(exc))
                raise

        state = SessionState.cancelled if summary.cancelled else SessionState.completed
        self._finish(session_id, state, summary)


@lru_cache
def build_default_session_manager(workers: Optional[int] = None) -> SessionManager:
    """Factory that wires sessions to the default store and ingestion boundaries."""
    settings = get_settings()
    classifier = BucketClassifier(settings.ingest_boundaries)
    return SessionManager(
        store=build_default_store(),
        classifier=classifier,
        workers=workers or settings.ingest_workers,
        partition_prefix=settings.partition_prefix,
    )
