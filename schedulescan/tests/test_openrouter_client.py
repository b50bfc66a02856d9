"""Unit tests for the OpenRouter client helpers."""

from __future__ import annotations

import json

import pytest
import requests

from schedulescan.services import openrouter_client as client


class FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)
        self.reason = "Error" if status_code != 200 else "OK"

    def json(self):
        if self._payload is None:
            raise json.JSONDecodeError("Expecting value", self.text, 0)
        return self._payload


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "env-key")


def test_merge_payload_prefers_env_model(monkeypatch) -> None:
    monkeypatch.setenv("OPENROUTER_MODEL", "openrouter/custom-model")

    payload = client._merge_payload(
        messages=[{"role": "user", "content": "ping"}],
        model=None,
        temperature=0.5,
        params={},
    )

    assert payload["model"] == "openrouter/custom-model"
    assert payload["max_tokens"] == 8192


def test_merge_payload_uses_settings_when_env_missing(monkeypatch) -> None:
    class DummySettings:
        openrouter_model = "openrouter/from-settings"

    monkeypatch.delenv("OPENROUTER_MODEL", raising=False)
    monkeypatch.setattr(client, "get_settings", lambda: DummySettings())

    payload = client._merge_payload(
        messages=[{"role": "user", "content": "ping"}],
        model=None,
        temperature=0.5,
        params={"response_format": {"type": "json_object"}, "x_title": "dropped"},
    )

    assert payload["model"] == "openrouter/from-settings"
    assert payload["response_format"] == {"type": "json_object"}
    assert "x_title" not in payload


def test_merge_headers_normalises_bearer_token() -> None:
    headers = client._merge_headers({"Authorization": "explicit"})
    assert headers["Authorization"] == "Bearer explicit"

    headers = client._merge_headers(None)
    assert headers["Authorization"] == "Bearer env-key"


def test_merge_headers_requires_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    with pytest.raises(client.OpenRouterError, match="OPENROUTER_API_KEY"):
        client._merge_headers(None)


def test_chat_returns_content_and_usage(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def fake_post(url, **kwargs):
        captured.update(kwargs)
        return FakeResponse(
            200,
            {
                "choices": [{"message": {"content": '{"events": []}'}}],
                "usage": {"total_tokens": 12},
            },
        )

    monkeypatch.setattr(client.requests, "post", fake_post)

    content, usage = client.chat(
        [{"role": "user", "content": "hi"}], model="m", timeout_read=30
    )

    assert content == '{"events": []}'
    assert usage == {"total_tokens": 12}
    assert captured["timeout"] == (10, 30)
    assert captured["json"]["model"] == "m"


def test_chat_raises_with_status_and_body(monkeypatch) -> None:
    monkeypatch.setattr(
        client.requests,
        "post",
        lambda url, **kwargs: FakeResponse(402, text='{"error": "credits"}'),
    )

    with pytest.raises(client.OpenRouterError) as excinfo:
        client.chat([{"role": "user", "content": "hi"}], model="m")

    assert excinfo.value.status_code == 402
    assert "credits" in excinfo.value.body


def test_chat_rejects_bad_shapes(monkeypatch) -> None:
    monkeypatch.setattr(
        client.requests, "post", lambda url, **kwargs: FakeResponse(200, {"choices": []})
    )

    with pytest.raises(client.OpenRouterError) as excinfo:
        client.chat([{"role": "user", "content": "hi"}], model="m")

    assert excinfo.value.status_code == 200


def test_chat_wraps_network_errors(monkeypatch) -> None:
    def fake_post(url, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(client.requests, "post", fake_post)

    with pytest.raises(client.OpenRouterError) as excinfo:
        client.chat([{"role": "user", "content": "hi"}], model="m")

    assert excinfo.value.status_code is None
