"""Test configuration for the ScheduleScan API."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Callable, Generator

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from schedulescan.config import get_settings, reset_settings_cache  # noqa: E402
from schedulescan.database import reset_database_state  # noqa: E402
from schedulescan.observability import metrics_registry  # noqa: E402
from schedulescan.services.llm import (  # noqa: E402
    LLMService,
    LLMTransportRequest,
    LLMTransportResponse,
)
from schedulescan.services.pipeline import get_llm_service, reset_pipeline_state  # noqa: E402

PDF_BYTES = (
    b"%PDF-1.4\n"
    b"1 0 obj\n<< /Type /Catalog >>\nendobj\n"
    b"trailer\n<< /Root 1 0 R >>\n%%EOF\n"
)

SCHEDULE_EVENTS = {
    "events": [
        {
            "event_date": "APR. 19, 2024",
            "start_time": "1540",
            "end_time": None,
            "description": "NOTICE OF READINESS TENDERED",
        },
        {
            "event_date": "2024-04-20",
            "start_time": "17:24",
            "end_time": "18:30",
            "description": "VESSEL DEPARTED",
        },
    ],
    "confidence": 90,
}


@pytest.fixture(autouse=True)
def _isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Provide isolated configuration for each test."""

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "storage"))
    monkeypatch.setenv("MAX_UPLOAD_SIZE", str(4096))
    for name in (
        "OPENROUTER_API_KEY",
        "LLM_PROVIDER",
        "LLM_MAX_RETRIES",
        "LLM_CACHE_ENABLED",
        "EXTRACTION_STRATEGY",
        "TRANSCRIPTION_ENGINE",
        "SOURCE_STRATEGY",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    reset_database_state()
    reset_pipeline_state()
    metrics_registry.reset()
    yield
    reset_settings_cache()
    reset_database_state()
    reset_pipeline_state()
    metrics_registry.reset()


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    """Return a test client for the FastAPI application."""

    from schedulescan.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def completion_replies(client: TestClient) -> Callable[..., list[LLMTransportRequest]]:
    """Route completion calls to canned replies; returns the captured requests."""

    from schedulescan.main import app

    def _install(*replies: object) -> list[LLMTransportRequest]:
        requests: list[LLMTransportRequest] = []
        queue = list(replies)

        def transport(request: LLMTransportRequest) -> LLMTransportResponse:
            requests.append(request)
            reply = queue[min(len(requests), len(queue)) - 1]
            if isinstance(reply, Exception):
                raise reply
            if not isinstance(reply, str):
                reply = json.dumps(reply)
            return LLMTransportResponse(content=reply)

        service = LLMService(
            get_settings(),
            transport_overrides={"openrouter": transport},
            sleep=lambda _: None,
        )
        app.dependency_overrides[get_llm_service] = lambda: service
        return requests

    return _install


@pytest.fixture()
def schedule_events() -> dict:
    return json.loads(json.dumps(SCHEDULE_EVENTS))


@pytest.fixture()
def upload_pdf(client: TestClient) -> Callable[..., object]:
    """Post ``content`` to the upload endpoint as a PDF attachment."""

    def _upload(
        content: bytes = PDF_BYTES,
        filename: str = "sof.pdf",
        content_type: str = "application/pdf",
    ):
        return client.post(
            "/api/upload",
            files={"file": (filename, content, content_type)},
        )

    return _upload
