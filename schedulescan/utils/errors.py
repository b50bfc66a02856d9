from __future__ import annotations

from typing import Any, Dict


class StorageError(Exception):
    """Raised when an object cannot be written to or read from storage."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class StorageObjectNotFound(StorageError):
    """Raised when a requested storage object does not exist."""


class InvalidStatusTransition(Exception):
    """Raised when a document is moved out of a terminal state."""

    def __init__(self, document_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Document {document_id} cannot move from {current} to {requested}"
        )
        self.document_id = document_id
        self.current = current
        self.requested = requested


class DocumentNotFound(LookupError):
    """Raised when a pipeline run references an unknown document id."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class TranscriptionError(Exception):
    """Raised when no usable text could be obtained from a document."""

    def __init__(self, message: str, extra: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.extra = extra or {}
