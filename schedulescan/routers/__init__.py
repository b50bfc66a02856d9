"""API router package."""

from fastapi import APIRouter

from .changes import router as changes_router
from .documents import router as documents_router
from .events import router as events_router
from .health import router as health_router
from .observability import router as observability_router
from .process import router as process_router
from .storage import router as storage_router
from .upload import router as upload_router

api_router = APIRouter()
api_router.include_router(upload_router)
api_router.include_router(process_router)
api_router.include_router(documents_router)
api_router.include_router(events_router)
api_router.include_router(storage_router)
api_router.include_router(changes_router)
api_router.include_router(health_router)
api_router.include_router(observability_router)

__all__ = ["api_router"]
