"""Tests for the document processing state machine."""

from __future__ import annotations

import pytest
from sqlmodel import Session, select

from schedulescan.database import get_engine
from schedulescan.middleware import get_request_id
from schedulescan.models import Document, DocumentStatus, Event
from schedulescan.observability import metrics_registry
from schedulescan.services import store
from schedulescan.services.extraction_agent import ExtractionAgent
from schedulescan.services.llm import (
    LLMQuotaExceededError,
    LLMRateLimitError,
    LLMUpstreamError,
    QUOTA_MESSAGE,
    RATE_LIMIT_MESSAGE,
)
from schedulescan.services.pipeline import DocumentPipeline, PipelineRequest
from schedulescan.services.storage import ObjectStorage

pytestmark = pytest.mark.usefixtures("database")

TWO_EVENTS = {
    "events": [
        {"event_date": "2024-04-20", "start_time": "06:00", "end_time": None, "description": "PILOT ON BOARD"},
        {"event_date": "2024-04-20", "start_time": "17:24:00", "end_time": "18:30:00", "description": "VESSEL DEPARTED"},
    ],
    "confidence": 88,
}


@pytest.fixture()
def storage(make_settings) -> ObjectStorage:
    return ObjectStorage.from_settings(make_settings())


def _pipeline(settings, llm, storage: ObjectStorage) -> DocumentPipeline:
    return DocumentPipeline(
        settings, agent=ExtractionAgent(settings, llm), storage=storage
    )


def _upload(storage: ObjectStorage, filename: str = "sof.pdf") -> Document:
    path = storage.put(b"%PDF-1.4 fake", filename=filename)
    with Session(get_engine()) as session:
        return store.create_document(
            session=session, filename=filename, storage_path=path
        )


def _reload(document_id: str) -> Document:
    with Session(get_engine()) as session:
        document = session.get(Document, document_id)
        assert document is not None
        return document


def _events() -> list[Event]:
    with Session(get_engine()) as session:
        return list(session.exec(select(Event)))


def test_successful_run_completes_document(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, "transcribed text", TWO_EVENTS)
    document = _upload(storage)

    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )

    assert outcome.success
    assert outcome.status_code == 200
    assert outcome.to_response() == {
        "success": True,
        "eventsExtracted": 2,
        "message": "Successfully extracted 2 events from sof.pdf",
    }

    refreshed = _reload(document.id)
    assert refreshed.status == DocumentStatus.COMPLETED
    assert refreshed.events_count == 2
    assert refreshed.completed_at is not None
    assert refreshed.error_message is None
    assert refreshed.confidence_score == 88
    assert refreshed.processing_time_seconds is not None

    events = _events()
    assert {event.source_pdf for event in events} == {"sof.pdf"}
    assert {event.document_id for event in events} == {document.id}
    with Session(get_engine()) as session:
        assert store.count_events(session=session, document_id=document.id) == 2
        by_name = store.list_events(session=session, source_pdf="sof.pdf")
    assert refreshed.events_count == len(by_name)

    snapshot = metrics_registry.snapshot()["pipeline"]
    assert snapshot["runs_completed"] == 1
    assert snapshot["events_extracted"] == 2


def test_zero_candidates_is_completed_not_failed(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, "nothing scheduled", {"events": []})
    document = _upload(storage)

    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )

    assert outcome.success
    assert outcome.events_extracted == 0
    refreshed = _reload(document.id)
    assert refreshed.status == DocumentStatus.COMPLETED
    assert refreshed.events_count == 0
    assert _events() == []


def test_missing_events_key_completes_with_zero(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, "text", {"result": "no events here"})
    document = _upload(storage)

    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )

    assert outcome.success
    refreshed = _reload(document.id)
    assert refreshed.status == DocumentStatus.COMPLETED
    assert refreshed.events_count == 0


def test_rate_limit_fails_document(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, LLMRateLimitError(RATE_LIMIT_MESSAGE, status_code=429))
    document = _upload(storage)

    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )

    assert not outcome.success
    assert outcome.status_code == 429
    assert outcome.to_response() == {"error": RATE_LIMIT_MESSAGE}
    refreshed = _reload(document.id)
    assert refreshed.status == DocumentStatus.FAILED
    assert refreshed.error_message == RATE_LIMIT_MESSAGE
    assert metrics_registry.snapshot()["pipeline"]["failures"] == {"rate_limit": 1}


def test_quota_and_upstream_errors_map_to_statuses(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, LLMQuotaExceededError(QUOTA_MESSAGE, status_code=402))
    document = _upload(storage)
    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )
    assert outcome.status_code == 402
    assert outcome.error == QUOTA_MESSAGE

    llm, _ = scripted_llm(
        settings, LLMUpstreamError("OpenRouter error 400: bad model", status_code=400, body="bad model")
    )
    document = _upload(storage, "other.pdf")
    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )
    assert outcome.status_code == 502
    assert "bad model" in outcome.error
    assert _reload(document.id).status == DocumentStatus.FAILED


def test_insert_failure_leaves_no_events(
    make_settings, scripted_llm, storage, monkeypatch
) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, "text", TWO_EVENTS)
    document = _upload(storage)

    original = store.insert_events

    def exploding_insert(*, session, events):
        original(session=session, events=events)
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "insert_events", exploding_insert)

    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )

    assert not outcome.success
    assert outcome.status_code == 500
    assert _events() == []
    refreshed = _reload(document.id)
    assert refreshed.status == DocumentStatus.FAILED
    assert refreshed.error_message == "disk full"
    assert refreshed.events_count == 0


def test_missing_stored_file_fails_with_404(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, transport = scripted_llm(settings, {"events": []})
    document = _upload(storage)
    storage.delete(document.storage_path)

    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )

    assert outcome.status_code == 404
    assert transport.requests == []
    assert _reload(document.id).status == DocumentStatus.FAILED


def test_terminal_document_is_not_reopened(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, "text", TWO_EVENTS)
    document = _upload(storage)
    pipeline = _pipeline(settings, llm, storage)
    request = PipelineRequest(document.storage_path, document.filename, document.id)

    assert pipeline.run(request).success
    second = pipeline.run(request)

    assert second.status_code == 409
    refreshed = _reload(document.id)
    assert refreshed.status == DocumentStatus.COMPLETED
    assert refreshed.events_count == 2
    assert len(_events()) == 2


def test_unknown_document_id_is_reported(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, "text", TWO_EVENTS)
    path = storage.put(b"%PDF-1.4", filename="x.pdf")

    outcome = _pipeline(settings, llm, storage).run(
        PipelineRequest(path, "x.pdf", "does-not-exist")
    )

    assert outcome.status_code == 404
    assert _events() == []


def test_run_without_document_id_still_inserts(make_settings, scripted_llm, storage) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, "text", TWO_EVENTS)
    path = storage.put(b"%PDF-1.4", filename="legacy.pdf")

    outcome = _pipeline(settings, llm, storage).run(PipelineRequest(path, "legacy.pdf"))

    assert outcome.events_extracted == 2
    events = _events()
    assert all(event.document_id is None for event in events)
    assert all(event.source_pdf == "legacy.pdf" for event in events)


def test_url_strategy_hands_public_address_to_agent(make_settings, scripted_llm, storage) -> None:
    settings = make_settings(source_strategy="url", extraction_strategy="single_pass")
    llm, transport = scripted_llm(settings, {"events": []})
    document = _upload(storage)

    _pipeline(settings, llm, storage).run(
        PipelineRequest(document.storage_path, document.filename, document.id)
    )

    file_part = transport.requests[0].messages[1]["content"][1]
    assert file_part["file"]["file_data"].endswith(f"/api/storage/{document.storage_path}")


def test_run_binds_the_originating_request_id(
    make_settings, scripted_llm, storage, monkeypatch
) -> None:
    settings = make_settings()
    llm, _ = scripted_llm(settings, "transcribed text", TWO_EVENTS)
    agent = ExtractionAgent(settings, llm)
    seen: list[str | None] = []
    original_extract = agent.extract

    def recording_extract(source, **kwargs):
        seen.append(get_request_id())
        return original_extract(source, **kwargs)

    monkeypatch.setattr(agent, "extract", recording_extract)
    document = _upload(storage)

    outcome = DocumentPipeline(settings, agent=agent, storage=storage).run(
        PipelineRequest(
            document.storage_path, document.filename, document.id, request_id="upload-7"
        )
    )

    assert outcome.success
    assert seen == ["upload-7"]
    assert get_request_id() is None
