"""Upload intake: validate, store the object and open a document row."""

from __future__ import annotations

import logging
import re
import secrets
from pathlib import Path

from fastapi import HTTPException, UploadFile, status
from sqlmodel import Session

from ..config import Settings
from ..models import Document
from ..utils.errors import StorageError
from . import store
from .storage import ObjectStorage

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB
PDF_MAGIC = b"%PDF-"


def display_filename(filename: str) -> str:
    """Return the basename shown to users and stamped on events."""

    if not filename:
        return f"document-{secrets.token_hex(4)}.pdf"
    name = Path(filename.replace("\\", "/")).name.strip()
    cleaned = re.sub(r"[\x00-\x1f]", "", name)
    return cleaned or f"document-{secrets.token_hex(4)}.pdf"


async def handle_upload(
    *,
    session: Session,
    upload: UploadFile,
    settings: Settings,
    storage: ObjectStorage,
) -> Document:
    """Persist an uploaded PDF and return its new ``processing`` document."""

    content_type = (upload.content_type or "").lower()
    if content_type and content_type not in settings.allowed_mimetypes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported file type"
        )

    chunks: list[bytes] = []
    total_bytes = 0
    try:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            total_bytes += len(chunk)
            if total_bytes > settings.max_upload_size:
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail="File exceeds maximum allowed size",
                )
            chunks.append(chunk)
    finally:
        await upload.close()

    data = b"".join(chunks)
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty"
        )
    if content_type in {"", "application/pdf"} and not data.startswith(PDF_MAGIC):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is not a PDF"
        )

    filename = display_filename(upload.filename or "")
    storage_path = storage.put(data, filename=filename)
    try:
        return store.create_document(
            session=session,
            filename=filename,
            storage_path=storage_path,
            mime_type=content_type or "application/pdf",
            byte_size=total_bytes,
        )
    except Exception:
        session.rollback()
        try:
            storage.delete(storage_path)
        except StorageError as exc:
            LOGGER.warning("Orphaned upload %s not removed: %s", storage_path, exc)
        else:
            LOGGER.info("Removed %s after the document row was not created", storage_path)
        raise


__all__ = ["handle_upload", "display_filename"]
