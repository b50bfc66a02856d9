"""Synchronous pipeline invocation for an already stored file."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..services.pipeline import DocumentPipeline, PipelineRequest, get_pipeline

router = APIRouter(prefix="/api", tags=["process"])


class ProcessPdfRequest(BaseModel):
    """Request body accepted by ``/api/process-pdf``."""

    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath", min_length=1)
    file_name: str = Field(alias="fileName", min_length=1)
    document_id: Optional[str] = Field(default=None, alias="documentId")


@router.post("/process-pdf")
def process_pdf(
    payload: ProcessPdfRequest,
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Run the pipeline to completion and report ``{success, eventsExtracted, message}``."""

    outcome = pipeline.run(
        PipelineRequest(
            file_path=payload.file_path,
            file_name=payload.file_name,
            document_id=payload.document_id,
        )
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_response())


__all__ = ["router", "ProcessPdfRequest"]
