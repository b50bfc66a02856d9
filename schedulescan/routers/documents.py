"""Document listing, lookup, deletion and stale-run recovery endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel
from sqlmodel import Session

from ..config import Settings, get_settings
from ..database import get_session
from ..models import Document, Event
from ..services import store
from ..services.pipeline import get_storage
from ..services.storage import ObjectStorage
from ..utils.errors import StorageError

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["documents"])


class RecoveryResponse(BaseModel):
    """Documents moved from ``processing`` to ``failed`` by a recovery sweep."""

    recovered: int
    document_ids: list[str]


class DocumentStatsResponse(BaseModel):
    """Upload totals by status and averages over completed documents."""

    total_documents: int
    by_status: dict[str, int]
    total_events: int
    success_rate: float
    avg_processing_time_seconds: Optional[float] = None
    avg_confidence_score: Optional[float] = None


def _require_document(session: Session, document_id: str) -> Document:
    document = store.get_document(session=session, document_id=document_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Document not found"
        )
    return document


@router.get("/documents", response_model=list[Document])
def list_documents(*, session: Session = Depends(get_session)) -> list[Document]:
    """Return uploaded documents, newest first."""

    return store.list_documents(session=session)


@router.get("/documents/stats", response_model=DocumentStatsResponse)
def read_document_stats(
    *, session: Session = Depends(get_session)
) -> DocumentStatsResponse:
    return DocumentStatsResponse(**store.document_stats(session=session))


@router.get("/documents/{document_id}", response_model=Document)
def get_document(
    document_id: str, *, session: Session = Depends(get_session)
) -> Document:
    return _require_document(session, document_id)


@router.get("/documents/{document_id}/events", response_model=list[Event])
def get_document_events(
    document_id: str, *, session: Session = Depends(get_session)
) -> list[Event]:
    """Return the events extracted from one document."""

    _require_document(session, document_id)
    return store.list_events(session=session, document_id=document_id)


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_document(
    document_id: str,
    *,
    session: Session = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
) -> Response:
    """Delete a document, its events and the stored file."""

    removed = store.delete_document(session=session, document_id=document_id)
    if removed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Document not found"
        )
    try:
        storage.delete(removed.storage_path)
    except StorageError as exc:
        LOGGER.warning("Stored object for %s not removed: %s", document_id, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/documents/recover-stale", response_model=RecoveryResponse)
def recover_stale(
    *,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> RecoveryResponse:
    """Fail documents stuck in ``processing`` past the configured timeout."""

    recovered = store.recover_stale_documents(
        session=session, timeout_seconds=settings.stale_processing_timeout_s
    )
    return RecoveryResponse(
        recovered=len(recovered), document_ids=[document.id for document in recovered]
    )


__all__ = ["router", "DocumentStatsResponse", "RecoveryResponse"]
