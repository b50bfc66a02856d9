"""Upload endpoint: store the file, open a document and queue its pipeline run."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile, status
from sqlmodel import Session

from ..config import Settings, get_settings
from ..database import get_session
from ..middleware import get_request_id
from ..models import Document
from ..services.pipeline import DocumentPipeline, PipelineRequest, get_pipeline, get_storage
from ..services.storage import ObjectStorage
from ..services.uploads import handle_upload

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])


@router.post("/upload", response_model=Document, status_code=status.HTTP_202_ACCEPTED)
async def upload_file(
    *,
    file: UploadFile = File(...),
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
    storage: ObjectStorage = Depends(get_storage),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> Document:
    """Accept a PDF; processing continues after the response is sent."""

    document = await handle_upload(
        session=session, upload=file, settings=settings, storage=storage
    )
    LOGGER.info("Queued %s as document %s", document.filename, document.id)
    background_tasks.add_task(
        pipeline.run,
        PipelineRequest(
            file_path=document.storage_path,
            file_name=document.filename,
            document_id=document.id,
            request_id=get_request_id(),
        ),
    )
    return document


__all__ = ["router"]
