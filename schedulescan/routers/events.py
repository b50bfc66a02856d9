"""Event listing, search, statistics and deletion endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlmodel import Session

from ..database import get_session
from ..models import Event
from ..services import store

router = APIRouter(prefix="/api", tags=["events"])


class DayCount(BaseModel):
    date: str
    count: int


class EventStatsResponse(BaseModel):
    """Aggregate figures over every stored event."""

    total_events: int
    distinct_pdfs: int
    busiest_day: Optional[DayCount] = None
    earliest_date: Optional[str] = None
    latest_date: Optional[str] = None
    top_days: list[DayCount] = Field(default_factory=list)


@router.get("/events", response_model=list[Event])
def list_events(
    *,
    source_pdf: Optional[str] = Query(default=None, description="Exact source filename."),
    q: Optional[str] = Query(default=None, description="Description substring."),
    session: Session = Depends(get_session),
) -> list[Event]:
    """Return events ordered by date, optionally filtered by source or text."""

    return store.list_events(session=session, source_pdf=source_pdf, q=q)


@router.get("/events/stats", response_model=EventStatsResponse)
def read_event_stats(*, session: Session = Depends(get_session)) -> EventStatsResponse:
    return EventStatsResponse(**store.event_stats(session=session))


@router.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_event(event_id: str, *, session: Session = Depends(get_session)) -> Response:
    """Delete one event. The owning document's count is left as recorded."""

    if not store.delete_event(session=session, event_id=event_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router", "EventStatsResponse"]
