"""Data-access helpers for documents and their extracted events."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Iterable, Sequence

from sqlalchemy import desc, func, update
from sqlmodel import Session, col, select

from ..models import Document, DocumentStatus, Event
from ..utils.errors import InvalidStatusTransition
from .changes import mark_changed

LOGGER = logging.getLogger(__name__)

STALE_RUN_MESSAGE = "Processing did not finish before the stale-run timeout; please re-upload."
TOP_DAYS_LIMIT = 5


def _now() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for values written as UTC.
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _transition(
    session: Session,
    document_id: str,
    requested: DocumentStatus,
    **values: Any,
) -> None:
    """Move a ``processing`` row to ``requested`` in one guarded UPDATE.

    The status check happens in the database, so of two concurrent writers only
    one can leave ``processing``; the other gets ``InvalidStatusTransition``.
    """

    statement = (
        update(Document)
        .where(col(Document.id) == document_id)
        .where(col(Document.status) == DocumentStatus.PROCESSING)
        .values(status=requested, **values)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(statement)  # type: ignore[call-overload]
    if result.rowcount != 1:
        current = session.exec(
            select(Document.status).where(col(Document.id) == document_id)
        ).first()
        raise InvalidStatusTransition(
            document_id,
            DocumentStatus(current).value if current is not None else "missing",
            requested.value,
        )
    mark_changed(session, Document.__tablename__)


def create_document(
    *,
    session: Session,
    filename: str,
    storage_path: str,
    mime_type: str | None = None,
    byte_size: int = 0,
) -> Document:
    """Insert a new document in the ``processing`` state."""

    document = Document(
        filename=filename,
        storage_path=storage_path,
        status=DocumentStatus.PROCESSING,
        mime_type=mime_type,
        byte_size=byte_size,
    )
    session.add(document)
    session.commit()
    session.refresh(document)
    return document


def get_document(*, session: Session, document_id: str) -> Document | None:
    return session.get(Document, document_id)


def list_documents(*, session: Session) -> list[Document]:
    """Return all documents, newest first."""

    statement = select(Document).order_by(desc(col(Document.created_at)))
    return list(session.exec(statement))


def mark_completed(
    *,
    session: Session,
    document: Document,
    events_count: int,
    confidence_score: float | None = None,
    processing_time_seconds: float | None = None,
    commit: bool = True,
) -> Document:
    """Move ``document`` to ``completed``.

    With ``commit=False`` the change joins the caller's transaction so it lands
    together with the event insert.
    """

    _transition(
        session,
        document.id,
        DocumentStatus.COMPLETED,
        events_count=events_count,
        completed_at=_now(),
        error_message=None,
        confidence_score=confidence_score,
        processing_time_seconds=processing_time_seconds,
    )
    if commit:
        session.commit()
    if document in session:
        session.refresh(document)
    return document


def mark_failed(
    *,
    session: Session,
    document_id: str,
    error_message: str,
    processing_time_seconds: float | None = None,
) -> Document | None:
    """Move the document to ``failed``; returns ``None`` if it no longer exists."""

    document = session.get(Document, document_id)
    if document is None:
        return None
    _transition(
        session,
        document_id,
        DocumentStatus.FAILED,
        error_message=error_message or "Processing failed",
        processing_time_seconds=processing_time_seconds,
    )
    session.commit()
    session.refresh(document)
    return document


def insert_events(*, session: Session, events: Iterable[Event]) -> list[Event]:
    """Stage ``events`` for insert and flush them; the caller commits."""

    staged = list(events)
    session.add_all(staged)
    session.flush()
    return staged


def list_events(
    *,
    session: Session,
    source_pdf: str | None = None,
    document_id: str | None = None,
    q: str | None = None,
) -> list[Event]:
    """Return events ordered by date then start time, optionally filtered."""

    statement = select(Event)
    if source_pdf is not None:
        statement = statement.where(Event.source_pdf == source_pdf)
    if document_id is not None:
        statement = statement.where(Event.document_id == document_id)
    if q and q.strip():
        needle = f"%{q.strip()}%"
        statement = statement.where(col(Event.description).ilike(needle))
    statement = statement.order_by(col(Event.event_date), col(Event.start_time))
    return list(session.exec(statement))


def count_events(*, session: Session, document_id: str) -> int:
    statement = select(func.count()).select_from(Event).where(Event.document_id == document_id)
    return int(session.exec(statement).one())


def delete_event(*, session: Session, event_id: str) -> bool:
    event = session.get(Event, event_id)
    if event is None:
        return False
    session.delete(event)
    session.commit()
    return True


def delete_document(*, session: Session, document_id: str) -> Document | None:
    """Remove a document and its events; returns the removed row or ``None``."""

    document = session.get(Document, document_id)
    if document is None:
        return None
    for event in list_events(session=session, document_id=document_id):
        session.delete(event)
    session.flush()
    session.delete(document)
    session.commit()
    return document


def document_stats(*, session: Session) -> dict[str, Any]:
    """Summarise uploads by status, with averages over completed runs."""

    by_status = {status.value: 0 for status in DocumentStatus}
    rows: Sequence[Any] = session.exec(
        select(Document.status, func.count()).group_by(col(Document.status))
    ).all()
    for status, count in rows:
        by_status[DocumentStatus(status).value] = int(count)
    total = sum(by_status.values())

    total_events = session.exec(select(func.coalesce(func.sum(Document.events_count), 0))).one()
    completed = col(Document.status) == DocumentStatus.COMPLETED
    avg_time = session.exec(
        select(func.avg(Document.processing_time_seconds)).where(
            completed, col(Document.processing_time_seconds).is_not(None)
        )
    ).one()
    avg_confidence = session.exec(
        select(func.avg(Document.confidence_score)).where(
            completed, col(Document.confidence_score).is_not(None)
        )
    ).one()

    completed_count = by_status[DocumentStatus.COMPLETED.value]
    return {
        "total_documents": total,
        "by_status": by_status,
        "total_events": int(total_events),
        "success_rate": round(completed_count / total * 100, 1) if total else 0.0,
        "avg_processing_time_seconds": float(avg_time) if avg_time is not None else None,
        "avg_confidence_score": float(avg_confidence) if avg_confidence is not None else None,
    }


def event_stats(*, session: Session) -> dict[str, Any]:
    """Summarise the event table for dashboard views."""

    total = int(session.exec(select(func.count()).select_from(Event)).one())
    distinct_pdfs = int(
        session.exec(select(func.count(func.distinct(Event.source_pdf)))).one()
    )
    earliest, latest = session.exec(
        select(func.min(Event.event_date), func.max(Event.event_date))
    ).one()

    day_count = func.count().label("day_count")
    rows: Sequence[Any] = session.exec(
        select(Event.event_date, day_count)
        .group_by(col(Event.event_date))
        .order_by(desc(day_count), col(Event.event_date))
        .limit(TOP_DAYS_LIMIT)
    ).all()
    top_days = [{"date": _iso(row[0]), "count": int(row[1])} for row in rows]

    return {
        "total_events": total,
        "distinct_pdfs": distinct_pdfs,
        "busiest_day": top_days[0] if top_days else None,
        "earliest_date": _iso(earliest),
        "latest_date": _iso(latest),
        "top_days": top_days,
    }


def _iso(value: Any) -> str | None:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def find_stale_documents(
    *,
    session: Session,
    timeout_seconds: int,
    now: datetime | None = None,
) -> list[Document]:
    """Return ``processing`` documents created before the timeout cutoff."""

    cutoff = (now or _now()) - timedelta(seconds=timeout_seconds)
    candidates = session.exec(
        select(Document).where(col(Document.status) == DocumentStatus.PROCESSING)
    ).all()
    return [document for document in candidates if _as_utc(document.created_at) <= cutoff]


def recover_stale_documents(
    *,
    session: Session,
    timeout_seconds: int,
    now: datetime | None = None,
) -> list[Document]:
    """Fail documents that have sat in ``processing`` longer than the timeout.

    A run that finishes between the lookup and the update keeps its terminal
    state; it is skipped here.
    """

    recovered_ids: list[str] = []
    for document in find_stale_documents(
        session=session, timeout_seconds=timeout_seconds, now=now
    ):
        try:
            _transition(
                session,
                document.id,
                DocumentStatus.FAILED,
                error_message=STALE_RUN_MESSAGE,
            )
        except InvalidStatusTransition as exc:
            LOGGER.info("Skipping stale-run recovery for %s: %s", document.id, exc)
            continue
        recovered_ids.append(document.id)

    if not recovered_ids:
        return []
    session.commit()
    LOGGER.warning("Marked %d stale processing document(s) as failed", len(recovered_ids))
    return [session.get(Document, document_id) for document_id in recovered_ids]


__all__ = [
    "STALE_RUN_MESSAGE",
    "count_events",
    "create_document",
    "delete_document",
    "delete_event",
    "document_stats",
    "event_stats",
    "find_stale_documents",
    "get_document",
    "insert_events",
    "list_documents",
    "list_events",
    "mark_completed",
    "mark_failed",
    "recover_stale_documents",
]
