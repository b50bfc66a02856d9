"""Serve stored objects so the completion service can fetch them by URL."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from ..services.pipeline import get_storage
from ..services.storage import ObjectStorage
from ..utils.errors import StorageError

router = APIRouter(prefix="/api", tags=["storage"])


@router.get("/storage/{object_path}", response_class=FileResponse)
def read_object(
    object_path: str, *, storage: ObjectStorage = Depends(get_storage)
) -> FileResponse:
    try:
        target = storage.resolve(object_path)
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if not target.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Object not found")
    return FileResponse(target, media_type="application/pdf", filename=target.name)


__all__ = ["router"]
