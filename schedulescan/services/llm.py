"""LLM integration layer providing provider abstraction, caching, and retries."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, MutableMapping, Sequence

import httpx

from ..config import Settings
from .openrouter_client import OpenRouterError, chat as openrouter_chat

LOGGER = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please wait a moment and try again."
QUOTA_MESSAGE = "AI usage quota exhausted. Please add credits to continue processing."


class LLMProviderError(RuntimeError):
    """Raised when the LLM provider returns an unrecoverable error."""

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


class LLMRetryableError(LLMProviderError):
    """Raised for transient provider errors (5xx, network failures)."""


class LLMRateLimitError(LLMRetryableError):
    """Raised when the provider answers HTTP 429."""


class LLMQuotaExceededError(LLMProviderError):
    """Raised when the provider reports exhausted credits (HTTP 402)."""


class LLMUpstreamError(LLMProviderError):
    """Raised for any other non-success provider response."""


class LLMCircuitOpenError(LLMProviderError):
    """Raised when the circuit breaker prevents additional calls."""


def classify_status(status: int | None, body: str | None, *, provider: str) -> LLMProviderError:
    """Translate an upstream HTTP status into the matching error kind."""

    if status == 429:
        return LLMRateLimitError(RATE_LIMIT_MESSAGE, status_code=status, body=body)
    if status == 402:
        return LLMQuotaExceededError(QUOTA_MESSAGE, status_code=status, body=body)
    if status is None or status in {500, 502, 503, 504}:
        return LLMRetryableError(
            f"{provider} request failed (HTTP {status or 'error'})",
            status_code=status,
            body=body,
        )
    snippet = (body or "").strip()[:300]
    return LLMUpstreamError(
        f"{provider} error {status}: {snippet}" if snippet else f"{provider} error {status}",
        status_code=status,
        body=body,
    )


@dataclass(frozen=True)
class LLMTransportRequest:
    """Container describing a transport request to a provider."""

    model: str
    messages: Sequence[Mapping[str, Any]]
    params: Mapping[str, Any]
    headers: Mapping[str, str]
    metadata: Mapping[str, Any] | None = None


@dataclass
class LLMTransportResponse:
    """Response payload returned by a transport implementation."""

    content: str
    usage: Mapping[str, Any] | None = None
    raw: Mapping[str, Any] | None = None


@dataclass
class LLMResult:
    """High-level result returned by :class:`LLMService`."""

    content: str
    usage: Mapping[str, Any] | None
    cached: bool


Transport = Callable[[LLMTransportRequest], LLMTransportResponse]


class LLMService:
    """Provide hardened LLM requests with optional caching, retries, and backoff."""

    def __init__(
        self,
        settings: Settings,
        *,
        cache_dir: Path | None = None,
        transport_overrides: Mapping[str, Transport] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        time_func: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._cache_dir: Path | None = None
        if settings.llm_cache_enabled:
            self._cache_dir = cache_dir or settings.llm_cache_dir
            self._cache_dir.mkdir(parents=True, exist_ok=True)
        self._transports = dict(transport_overrides or {})
        self._sleep = sleep
        self._time = time_func
        self._failure_count = 0
        self._circuit_open_until: float | None = None
        self._max_retries = settings.llm_max_retries
        self._base_backoff = 1.5
        self._circuit_threshold = 3
        self._cooldown_seconds = 30.0

    @property
    def is_enabled(self) -> bool:
        provider = self.get_provider()
        if provider in self._transports:
            return True
        if provider == "openrouter":
            return bool(self._settings.openrouter_api_key)
        return provider == "ollama"

    def get_provider(self) -> str:
        """Return the configured provider identifier."""

        return (self._settings.llm_provider or "openrouter").lower()

    def generate(
        self,
        *,
        messages: Sequence[Mapping[str, Any]],
        model: str | None = None,
        json_mode: bool = False,
        params: Mapping[str, Any] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> LLMResult:
        """Generate a completion with retries, caching, and circuit breaking."""

        if not messages:
            raise ValueError("LLMService.generate requires at least one message")

        provider = self.get_provider()
        if self._circuit_open_until and self._time() < self._circuit_open_until:
            raise LLMCircuitOpenError(
                f"Provider circuit open for another {self._circuit_open_until - self._time():.1f}s"
            )

        base_model = model or self._settings.openrouter_model
        base_params: MutableMapping[str, Any] = dict(params or {})
        if json_mode:
            base_params["response_format"] = {"type": "json_object"}

        cache_key = self._build_cache_key(provider, base_model, messages, base_params)
        cached = self._read_cache(cache_key)
        if cached is not None:
            LOGGER.debug("LLM cache hit provider=%s model=%s", provider, base_model)
            return LLMResult(
                content=cached["content"], usage=cached.get("usage"), cached=True
            )

        attempt = 0
        last_error: Exception | None = None

        while attempt <= self._max_retries:
            attempt += 1
            request = LLMTransportRequest(
                model=base_model,
                messages=[dict(message) for message in messages],
                params=dict(base_params),
                headers=self._build_headers(provider),
                metadata=metadata or {},
            )

            try:
                response = self._call_provider(provider, request)
            except LLMRetryableError as error:
                last_error = error
                self._register_failure()
                LOGGER.warning(
                    "LLM attempt %s/%s failed: %s",
                    attempt,
                    self._max_retries + 1,
                    error,
                )
                if attempt > self._max_retries:
                    break
                self._sleep(self._backoff_seconds(attempt))
                continue
            except LLMProviderError as error:
                last_error = error
                self._register_failure(trip=True)
                break

            self._reset_failures()
            result = {"content": response.content, "usage": dict(response.usage or {})}
            self._write_cache(cache_key, result)
            if response.usage:
                self._log_usage(provider, base_model, response.usage)
            return LLMResult(content=response.content, usage=response.usage, cached=False)

        if last_error is None:
            last_error = LLMProviderError("Unknown LLM failure")
        raise last_error

    def _register_failure(self, *, trip: bool = False) -> None:
        self._failure_count += 1
        if trip or self._failure_count >= self._circuit_threshold:
            self._circuit_open_until = self._time() + self._cooldown_seconds
            LOGGER.warning(
                "LLM circuit opened after %s consecutive failures; cooling down for %.1fs",
                self._failure_count,
                self._cooldown_seconds,
            )
            self._failure_count = 0

    def _reset_failures(self) -> None:
        self._failure_count = 0
        self._circuit_open_until = None

    def _backoff_seconds(self, attempt: int) -> float:
        return self._base_backoff * max(1, attempt)

    def _build_cache_key(
        self,
        provider: str,
        model: str,
        messages: Sequence[Mapping[str, Any]],
        params: Mapping[str, Any],
    ) -> str:
        serialisable = {
            "provider": provider,
            "model": model,
            "messages": list(messages),
            "params": dict(params),
        }
        payload = json.dumps(serialisable, sort_keys=True, ensure_ascii=False)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def _read_cache(self, cache_key: str) -> dict[str, Any] | None:
        if self._cache_dir is None:
            return None
        cache_path = self._cache_dir / f"{cache_key}.json"
        if not cache_path.exists():
            return None
        try:
            return json.loads(cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to read LLM cache %s: %s", cache_path, exc)
            return None

    def _write_cache(self, cache_key: str, payload: Mapping[str, Any]) -> None:
        if self._cache_dir is None:
            return
        cache_path = self._cache_dir / f"{cache_key}.json"
        tmp_path = cache_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, cache_path)

    def _build_headers(self, provider: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if provider == "openrouter" and provider not in self._transports:
            if not self._settings.openrouter_api_key:
                raise LLMProviderError("OPENROUTER_API_KEY is not configured")
            headers["Authorization"] = f"Bearer {self._settings.openrouter_api_key}"
            if self._settings.openrouter_http_referer:
                headers["HTTP-Referer"] = self._settings.openrouter_http_referer.strip()
            if self._settings.openrouter_title:
                headers["X-Title"] = self._settings.openrouter_title.strip()
        return headers

    def _call_provider(
        self, provider: str, request: LLMTransportRequest
    ) -> LLMTransportResponse:
        if provider in self._transports:
            return self._transports[provider](request)
        if provider == "openrouter":
            return self.call_openrouter(request)
        if provider == "ollama":
            return self.call_ollama(request)
        raise LLMProviderError(f"Unsupported LLM provider: {provider}")

    def call_openrouter(self, request: LLMTransportRequest) -> LLMTransportResponse:
        params = dict(request.params)
        raw_temperature = params.pop("temperature", None)
        try:
            temperature = float(raw_temperature) if raw_temperature is not None else 0.1
        except (TypeError, ValueError):
            temperature = 0.1

        try:
            content, usage = openrouter_chat(
                [dict(message) for message in request.messages],
                model=request.model,
                temperature=temperature,
                params=params,
                headers=request.headers,
                timeout_read=self._settings.llm_timeout_s,
            )
        except OpenRouterError as exc:
            if exc.status_code == 200:
                raise LLMUpstreamError(str(exc), status_code=200, body=exc.body) from exc
            raise classify_status(exc.status_code, exc.body, provider="OpenRouter") from exc

        return LLMTransportResponse(content=content, usage=usage, raw=None)

    def call_ollama(self, request: LLMTransportRequest) -> LLMTransportResponse:
        messages = []
        for message in request.messages:
            content = message.get("content")
            if isinstance(content, list):
                if any(part.get("type") != "text" for part in content):
                    raise LLMProviderError(
                        "Ollama cannot read document attachments; "
                        "set TRANSCRIPTION_ENGINE=pymupdf"
                    )
                content = "\n\n".join(part.get("text", "") for part in content)
            messages.append({"role": message.get("role", "user"), "content": content})

        params = dict(request.params)
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": False,
        }
        if params.pop("response_format", None):
            payload["format"] = "json"
        if params:
            payload["options"] = params
        try:
            response = httpx.post(
                self._settings.ollama_url,
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=float(self._settings.llm_timeout_s),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise classify_status(
                exc.response.status_code, exc.response.text[:2000], provider="Ollama"
            ) from exc
        except httpx.RequestError as exc:
            raise LLMRetryableError(f"Ollama request failed: {exc}") from exc

        data = response.json()
        if "message" in data:
            content = data["message"].get("content", "")
        else:
            content = data.get("content", "")
        return LLMTransportResponse(content=content, usage=data.get("usage"), raw=data)

    def _log_usage(
        self,
        provider: str,
        model: str,
        usage: Mapping[str, Any],
    ) -> None:
        LOGGER.info(
            "LLM usage provider=%s model=%s prompt=%s completion=%s total=%s",
            provider,
            model,
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            usage.get("total_tokens"),
        )


__all__ = [
    "LLMCircuitOpenError",
    "LLMProviderError",
    "LLMQuotaExceededError",
    "LLMRateLimitError",
    "LLMResult",
    "LLMRetryableError",
    "LLMService",
    "LLMTransportRequest",
    "LLMTransportResponse",
    "LLMUpstreamError",
    "QUOTA_MESSAGE",
    "RATE_LIMIT_MESSAGE",
    "classify_status",
]
