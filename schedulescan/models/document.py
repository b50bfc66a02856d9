"""Document model definition."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


class DocumentStatus(str, Enum):
    """Processing lifecycle of an uploaded document."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not DocumentStatus.PROCESSING


def _new_id() -> str:
    return uuid.uuid4().hex


class Document(SQLModel, table=True):
    """Represents an uploaded schedule document and its processing state."""

    __tablename__ = "documents"

    id: str = Field(default_factory=_new_id, primary_key=True)
    filename: str = Field(
        index=True, description="Original filename of the uploaded document."
    )
    storage_path: str = Field(
        description="Object path of the stored file inside the storage bucket."
    )
    status: DocumentStatus = Field(
        default=DocumentStatus.PROCESSING,
        description="Processing status for the document.",
    )
    events_count: int = Field(
        default=0, ge=0, description="Number of events extracted from the document."
    )
    error_message: Optional[str] = Field(
        default=None, description="Failure reason, present only when status is failed."
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        index=True,
        description="UTC timestamp indicating when the file was uploaded.",
    )
    completed_at: Optional[datetime] = Field(
        default=None,
        description="Timestamp of the transition to completed.",
    )
    processing_time_seconds: Optional[float] = Field(
        default=None, description="Wall-clock duration of the processing run."
    )
    confidence_score: Optional[float] = Field(
        default=None,
        ge=0,
        le=100,
        description="Extraction confidence reported by the completion service (0-100).",
    )
    mime_type: Optional[str] = Field(
        default=None, description="Declared MIME type for the uploaded document."
    )
    byte_size: int = Field(
        default=0, description="Size of the uploaded document in bytes."
    )
