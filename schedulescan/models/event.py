"""Event model definition."""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, time
from typing import Optional

from sqlmodel import Field, SQLModel


class Event(SQLModel, table=True):
    """A dated time window extracted from a source document."""

    __tablename__ = "events"

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    event_date: date = Field(index=True)
    start_time: time
    end_time: Optional[time] = Field(
        default=None, description="Absent for open-ended or instant events."
    )
    description: str = Field(min_length=1)
    source_pdf: str = Field(
        index=True, description="Filename of the originating document."
    )
    document_id: Optional[str] = Field(
        default=None,
        foreign_key="documents.id",
        index=True,
        description="Stable reference to the originating document.",
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def spans_midnight(self) -> bool:
        return self.end_time is not None and self.end_time < self.start_time
