"""Synchronous OpenRouter chat client used by the extraction agent."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import requests

from ..config import get_settings

log = logging.getLogger("openrouter")

OPENROUTER_URL = os.getenv(
    "OPENROUTER_URL", "https://openrouter.ai/api/v1/chat/completions"
).strip()
_DEFAULT_OPENROUTER_MODEL = "google/gemini-2.5-flash"
_DEFAULT_MAX_TOKENS = 8192
SITE_URL = os.getenv("OPENROUTER_SITE_URL", "http://localhost:8000").strip()
X_TITLE = os.getenv("OPENROUTER_X_TITLE", "ScheduleScan").strip()


def _resolve_default_model() -> str:
    """Return the configured default model from the environment or settings."""

    env_model = os.getenv("OPENROUTER_MODEL")
    if env_model and env_model.strip():
        return env_model.strip()

    configured = getattr(get_settings(), "openrouter_model", "")
    if isinstance(configured, str) and configured.strip():
        return configured.strip()

    return _DEFAULT_OPENROUTER_MODEL


class OpenRouterError(RuntimeError):
    """Raised when the OpenRouter API request fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _merge_payload(
    messages: List[Dict[str, Any]],
    model: Optional[str],
    temperature: float,
    params: Mapping[str, Any] | None,
) -> Dict[str, Any]:
    extra: MutableMapping[str, Any] = dict(params or {})
    extra.setdefault("max_tokens", _DEFAULT_MAX_TOKENS)

    payload: Dict[str, Any] = {
        "model": model or _resolve_default_model(),
        "messages": messages,
        "temperature": temperature,
    }

    for key, value in extra.items():
        if key in {"http_referer", "HTTP-Referer", "x_title", "X-Title"}:
            continue
        if value is not None:
            payload[key] = value

    return payload


def _merge_headers(headers: Mapping[str, str] | None) -> Dict[str, str]:
    merged: Dict[str, str] = {
        "Content-Type": "application/json",
        "HTTP-Referer": SITE_URL,
        "X-Title": X_TITLE,
    }

    auth_header = None
    if headers:
        auth_header = headers.get("Authorization") or headers.get("authorization")
    env_key = os.getenv("OPENROUTER_API_KEY", "").strip()
    if auth_header and auth_header.strip():
        token = auth_header.strip()
        if not token.lower().startswith("bearer "):
            token = f"Bearer {token}"
        merged["Authorization"] = token
    elif env_key:
        merged["Authorization"] = f"Bearer {env_key}"
    else:
        raise OpenRouterError("Missing OPENROUTER_API_KEY")

    for key, value in (headers or {}).items():
        if key.lower() == "authorization" or not value:
            continue
        merged[key] = value.strip() if isinstance(value, str) else value

    return merged


def chat(
    messages: List[Dict[str, Any]],
    *,
    model: Optional[str] = None,
    temperature: float = 0.1,
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    timeout_connect: int = 10,
    timeout_read: int = 120,
) -> tuple[str, Mapping[str, Any] | None]:
    """Send a chat completion request and return ``(content, usage)``."""

    if not OPENROUTER_URL.startswith("http"):
        raise OpenRouterError(f"Invalid OPENROUTER_URL: {OPENROUTER_URL!r}")

    payload = _merge_payload(messages, model, temperature, params)
    request_headers = _merge_headers(headers)

    log.debug(
        "OpenRouter request model=%s messages=%d",
        payload["model"],
        len(messages),
    )

    try:
        response = requests.post(
            OPENROUTER_URL,
            headers=request_headers,
            json=payload,
            timeout=(timeout_connect, timeout_read),
        )
    except requests.RequestException as exc:
        log.error("OpenRouter request failed: %s", exc)
        raise OpenRouterError("OpenRouter request failed") from exc

    if response.status_code != 200:
        body = response.text[:2000]
        log.error("OpenRouter error %s: %s", response.status_code, body[:500])
        raise OpenRouterError(
            f"{response.status_code} {response.reason}",
            status_code=response.status_code,
            body=body,
        )

    try:
        data = response.json()
    except json.JSONDecodeError as exc:
        log.error("OpenRouter invalid JSON: %s", response.text[:500])
        raise OpenRouterError(
            "Invalid JSON from OpenRouter", status_code=200, body=response.text[:2000]
        ) from exc

    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        log.error("OpenRouter bad shape: %s / %s", exc, data)
        raise OpenRouterError(
            "No choices in OpenRouter response", status_code=200, body=json.dumps(data)[:2000]
        ) from exc

    return content or "", data.get("usage")


__all__ = ["chat", "OpenRouterError"]
