"""Shared fixtures for ScheduleScan unit tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Generator, Iterable

import pytest

from schedulescan.config import Settings, reset_settings_cache
from schedulescan.database import init_db, reset_database_state
from schedulescan.observability import metrics_registry
from schedulescan.services.llm import LLMService, LLMTransportRequest, LLMTransportResponse
from schedulescan.services.pipeline import reset_pipeline_state

ISOLATED_VARIABLES = (
    "OPENROUTER_API_KEY",
    "OPENROUTER_MODEL",
    "LLM_PROVIDER",
    "LLM_MAX_RETRIES",
    "LLM_CACHE_ENABLED",
    "EXTRACTION_STRATEGY",
    "TRANSCRIPTION_ENGINE",
    "SOURCE_STRATEGY",
    "TRANSCRIPTION_PROMPT_PATH",
    "EXTRACTION_PROMPT_PATH",
    "STALE_PROCESSING_TIMEOUT_S",
)


@pytest.fixture(autouse=True)
def _isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Point the database and storage at a per-test directory."""

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "storage"))
    for name in ISOLATED_VARIABLES:
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
def database() -> None:
    init_db()


@pytest.fixture()
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def _build(**overrides) -> Settings:
        values = {
            "storage_dir": tmp_path / "storage",
            "llm_provider": "openrouter",
            "openrouter_api_key": "test-key",
            "openrouter_model": "openrouter/test-model",
        }
        values.update(overrides)
        return Settings(**values)

    return _build


class ScriptedTransport:
    """Fake completion transport replaying canned replies in order."""

    def __init__(self, replies: Iterable[object]) -> None:
        self.replies = list(replies)
        self.requests: list[LLMTransportRequest] = []

    def __call__(self, request: LLMTransportRequest) -> LLMTransportResponse:
        self.requests.append(request)
        reply = self.replies[min(len(self.requests), len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return LLMTransportResponse(content=reply)


@pytest.fixture()
def scripted_llm() -> Callable[..., tuple[LLMService, ScriptedTransport]]:
    """Build an ``LLMService`` whose openrouter transport replays ``replies``."""

    def _build(settings: Settings, *replies: object) -> tuple[LLMService, ScriptedTransport]:
        transport = ScriptedTransport(replies)
        service = LLMService(
            settings,
            transport_overrides={"openrouter": transport},
            sleep=lambda _: None,
            time_func=lambda: 0.0,
        )
        return service, transport

    return _build
