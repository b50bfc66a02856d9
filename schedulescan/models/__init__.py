"""Database models for the ScheduleScan backend."""

from .document import Document, DocumentStatus
from .event import Event

__all__ = [
    "Document",
    "DocumentStatus",
    "Event",
]
