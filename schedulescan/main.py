"""ScheduleScan backend entrypoint."""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session

from . import __version__
from .config import get_settings
from .database import get_engine, init_db
from .middleware import RequestIdMiddleware
from .observability import RequestMetricsMiddleware
from .routers import api_router
from .services import store
from .services.storage import ObjectStorage
from .utils.logging import configure_logging

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger("uvicorn.error")

cors_allow_origins = list(settings.cors_allow_origins)
allow_credentials = True
if "*" in cors_allow_origins:
    cors_allow_origins = ["*"]
    allow_credentials = False
if not cors_allow_origins:
    cors_allow_origins = ["http://localhost:5173", "http://127.0.0.1:5173"]

_cors_origin_pattern = (
    re.compile(settings.cors_allow_origin_regex)
    if settings.cors_allow_origin_regex
    else None
)


def _mask_api_key(value: str | None) -> str:
    """Return a masked representation of the OpenRouter API key."""

    if not value or not value.strip():
        return "<missing>"

    stripped = value.strip()
    if len(stripped) <= 8:
        middle = "*" * max(len(stripped) - 2, 1)
        return f"{stripped[0]}{middle}{stripped[-1]}"

    return f"{stripped[:4]}...{stripped[-4:]}"


def _announce_llm_provider() -> None:
    """Log which completion provider extraction will use."""

    current = get_settings()
    provider = current.llm_provider.lower()
    if provider == "openrouter":
        if current.openrouter_api_key and current.openrouter_api_key.strip():
            logger.info(
                "[ScheduleScan] OpenRouter API key loaded from environment (.env): %s",
                _mask_api_key(current.openrouter_api_key),
            )
        else:
            logger.warning(
                "[ScheduleScan] OpenRouter API key not found in environment (.env); "
                "document processing will fail until it is set."
            )
    else:
        logger.info("[ScheduleScan] Extraction provider: %s", provider)


def _recover_stale_documents() -> None:
    current = get_settings()
    with Session(get_engine()) as session:
        store.recover_stale_documents(
            session=session, timeout_seconds=current.stale_processing_timeout_s
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database, storage bucket and stale-run sweep."""

    init_db()
    ObjectStorage.from_settings(get_settings())
    _recover_stale_documents()
    _announce_llm_provider()
    yield


app = FastAPI(title="ScheduleScan", version=__version__, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_origin_regex=settings.cors_allow_origin_regex,
)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(RequestMetricsMiddleware)

app.include_router(api_router)


@app.exception_handler(Exception)
async def handle_unexpected_exception(
    request: Request, exc: Exception
) -> JSONResponse:
    """Ensure unexpected exceptions return a JSON payload."""

    logger.exception(
        "Unhandled exception while processing %s %s", request.method, request.url.path
    )
    origin = request.headers.get("origin")
    headers: dict[str, str] = {}

    if origin:
        allowed_origin: str | None = None

        if cors_allow_origins == ["*"]:
            allowed_origin = "*"
        elif origin in cors_allow_origins:
            allowed_origin = origin
        elif _cors_origin_pattern and _cors_origin_pattern.fullmatch(origin):
            allowed_origin = origin

        if allowed_origin:
            headers["Access-Control-Allow-Origin"] = allowed_origin
            headers.setdefault("Vary", "Origin")
            if allow_credentials and allowed_origin != "*":
                headers["Access-Control-Allow-Credentials"] = "true"

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"},
        headers=headers or None,
    )


__all__ = ["app"]
