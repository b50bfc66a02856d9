"""Document processing pipeline: stored file to persisted events.

One run moves a document from ``processing`` to exactly one terminal state.
Events and the ``completed`` transition are written in a single transaction,
so a failed insert leaves no events behind and the document ends ``failed``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict

from fastapi import Depends
from sqlalchemy.engine import Engine
from sqlmodel import Session

from ..config import Settings, get_settings
from ..database import get_engine
from ..middleware.request_context import bind_request_id, reset_request_id
from ..models import DocumentStatus
from ..observability import MetricsRegistry, metrics_registry
from ..utils.errors import (
    DocumentNotFound,
    InvalidStatusTransition,
    StorageError,
    StorageObjectNotFound,
    TranscriptionError,
)
from . import store
from .extraction_agent import DocumentSource, ExtractionAgent, ExtractionResult
from .llm import (
    LLMProviderError,
    LLMQuotaExceededError,
    LLMRateLimitError,
    LLMService,
)
from .storage import ObjectStorage

LOGGER = logging.getLogger(__name__)


@dataclass
class PipelineRequest:
    """Invocation contract shared by the upload flow and ``/api/process-pdf``."""

    file_path: str
    file_name: str
    document_id: str | None = None
    request_id: str | None = None


@dataclass
class PipelineOutcome:
    success: bool
    status_code: int = 200
    events_extracted: int = 0
    message: str = ""
    error: str | None = None
    document_id: str | None = None

    def to_response(self) -> Dict[str, Any]:
        if self.success:
            return {
                "success": True,
                "eventsExtracted": self.events_extracted,
                "message": self.message,
            }
        return {"error": self.error or "Processing failed"}


def classify_failure(exc: BaseException) -> tuple[str, int, str]:
    """Return ``(kind, http_status, user_message)`` for a failed run."""

    if isinstance(exc, LLMRateLimitError):
        return "rate_limit", 429, str(exc)
    if isinstance(exc, LLMQuotaExceededError):
        return "quota", 402, str(exc)
    if isinstance(exc, LLMProviderError):
        return "upstream", 502, f"Extraction service error: {exc}"
    if isinstance(exc, StorageObjectNotFound):
        return "storage", 404, str(exc)
    if isinstance(exc, DocumentNotFound):
        return "not_found", 404, str(exc)
    if isinstance(exc, InvalidStatusTransition):
        return "conflict", 409, str(exc)
    if isinstance(exc, StorageError):
        return "storage", 500, str(exc)
    if isinstance(exc, TranscriptionError):
        return "transcription", 500, str(exc)
    return "internal", 500, str(exc) or exc.__class__.__name__


class DocumentPipeline:
    """Run extraction for one stored document and record the outcome."""

    def __init__(
        self,
        settings: Settings,
        *,
        agent: ExtractionAgent,
        storage: ObjectStorage,
        engine: Engine | None = None,
        metrics: MetricsRegistry = metrics_registry,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._settings = settings
        self._agent = agent
        self._storage = storage
        self._engine = engine
        self._metrics = metrics
        self._clock = clock

    @property
    def engine(self) -> Engine:
        return self._engine or get_engine()

    def run(self, request: PipelineRequest) -> PipelineOutcome:
        """Process one document; logs carry ``request.request_id`` when given."""

        token = bind_request_id(request.request_id) if request.request_id else None
        try:
            return self._run(request)
        finally:
            if token is not None:
                reset_request_id(token)

    def _run(self, request: PipelineRequest) -> PipelineOutcome:
        started = self._clock()
        self._metrics.pipeline_started()
        LOGGER.info(
            "Pipeline start file=%s path=%s document=%s",
            request.file_name,
            request.file_path,
            request.document_id or "-",
        )

        try:
            if request.document_id:
                self._check_document(request.document_id)
            source = self._resolve_source(request)
            result = self._agent.extract(source, document_id=request.document_id)
            inserted = self._persist(request, result, self._clock() - started)
        except Exception as exc:  # noqa: BLE001 - every failure ends the run
            return self._fail(request, exc, self._clock() - started)

        duration = self._clock() - started
        self._metrics.pipeline_completed(inserted, duration)
        if inserted:
            message = f"Successfully extracted {inserted} events from {request.file_name}"
        else:
            message = f"No events found in {request.file_name}"
        LOGGER.info(
            "Pipeline completed file=%s events=%d duration=%.2fs",
            request.file_name,
            inserted,
            duration,
        )
        return PipelineOutcome(
            success=True,
            events_extracted=inserted,
            message=message,
            document_id=request.document_id,
        )

    def _check_document(self, document_id: str) -> None:
        with Session(self.engine) as session:
            document = store.get_document(session=session, document_id=document_id)
            if document is None:
                raise DocumentNotFound(document_id)
            current = DocumentStatus(document.status)
            if current.is_terminal:
                raise InvalidStatusTransition(
                    document_id, current.value, DocumentStatus.COMPLETED.value
                )

    def _resolve_source(self, request: PipelineRequest) -> DocumentSource:
        if self._settings.source_strategy == "url" and not self._agent.needs_bytes:
            if not self._storage.exists(request.file_path):
                raise StorageObjectNotFound(
                    f"Stored file not found: {request.file_path}", path=request.file_path
                )
            return DocumentSource(
                filename=request.file_name,
                url=self._storage.public_url(request.file_path),
            )
        return DocumentSource(
            filename=request.file_name,
            data=self._storage.read(request.file_path),
        )

    def _persist(
        self, request: PipelineRequest, result: ExtractionResult, elapsed: float
    ) -> int:
        events = [candidate.to_event() for candidate in result.candidates]
        with Session(self.engine) as session:
            try:
                store.insert_events(session=session, events=events)
                if request.document_id:
                    document = store.get_document(
                        session=session, document_id=request.document_id
                    )
                    if document is None:
                        raise DocumentNotFound(request.document_id)
                    store.mark_completed(
                        session=session,
                        document=document,
                        events_count=len(events),
                        confidence_score=result.confidence,
                        processing_time_seconds=round(elapsed, 3),
                        commit=False,
                    )
                session.commit()
            except Exception:
                session.rollback()
                raise
        return len(events)

    def _fail(
        self, request: PipelineRequest, exc: Exception, duration: float
    ) -> PipelineOutcome:
        kind, status_code, message = classify_failure(exc)
        if kind == "internal":
            LOGGER.exception("Pipeline failed for %s", request.file_name)
        else:
            LOGGER.warning("Pipeline failed for %s (%s): %s", request.file_name, kind, message)

        if request.document_id and kind not in {"not_found", "conflict"}:
            self._record_failure(request.document_id, message, duration)

        self._metrics.pipeline_failed(kind, duration)
        return PipelineOutcome(
            success=False,
            status_code=status_code,
            error=message,
            document_id=request.document_id,
        )

    def _record_failure(self, document_id: str, message: str, duration: float) -> None:
        try:
            with Session(self.engine) as session:
                store.mark_failed(
                    session=session,
                    document_id=document_id,
                    error_message=message,
                    processing_time_seconds=round(duration, 3),
                )
        except InvalidStatusTransition as exc:
            LOGGER.warning("Not marking %s failed: %s", document_id, exc)
        except Exception:  # noqa: BLE001 - the run result is still reported
            LOGGER.exception("Could not record failure for document %s", document_id)


_llm_services: dict[int, LLMService] = {}


def get_llm_service(settings: Settings = Depends(get_settings)) -> LLMService | None:
    """Return the shared completion-service client for ``settings``."""

    if settings.llm_provider.lower() == "rules":
        return None
    service = _llm_services.get(id(settings))
    if service is None:
        service = LLMService(settings)
        _llm_services.clear()
        _llm_services[id(settings)] = service
    return service


def get_storage(settings: Settings = Depends(get_settings)) -> ObjectStorage:
    return ObjectStorage.from_settings(settings)


def get_pipeline(
    settings: Settings = Depends(get_settings),
    llm: LLMService | None = Depends(get_llm_service),
    storage: ObjectStorage = Depends(get_storage),
) -> DocumentPipeline:
    return DocumentPipeline(
        settings,
        agent=ExtractionAgent(settings, llm),
        storage=storage,
    )


def reset_pipeline_state() -> None:
    """Drop the shared completion-service client (used by tests)."""

    _llm_services.clear()


__all__ = [
    "DocumentPipeline",
    "PipelineOutcome",
    "PipelineRequest",
    "classify_failure",
    "get_llm_service",
    "get_pipeline",
    "get_storage",
    "reset_pipeline_state",
]
