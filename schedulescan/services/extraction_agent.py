"""Turn schedule documents into extraction candidates via the completion service.

The default ``two_pass`` strategy first transcribes the document to plain text
and then asks for a JSON object of events; ``single_pass`` attaches the
document to the event request directly. Completion output is treated as
untrusted: unparseable or schema-mismatched payloads degrade to an empty
candidate set, and every candidate is repaired and canonicalised before it
leaves this module.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, time
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from ..config import DEFAULT_PROMPTS_DIR, Settings
from ..models import Event
from ..utils.errors import TranscriptionError
from .llm import LLMService
from .normalizer import (
    is_canonical_date,
    is_canonical_time,
    normalize_date,
    normalize_time,
    repair_time,
    scan_schedule_lines,
)
from .text_extraction import extract_text_pymupdf

LOGGER = logging.getLogger(__name__)

TRANSCRIPTION_PROMPT_FILE = "transcribe.txt"
EXTRACTION_PROMPT_FILE = "extract_events.txt"
FALLBACK_START_TIME = "00:00:00"
FALLBACK_DESCRIPTION = "Untitled event"

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


@dataclass
class DocumentSource:
    """A document as handed to the agent: bytes, a fetchable URL, or text."""

    filename: str
    data: bytes | None = None
    url: str | None = None
    text: str | None = None
    mime_type: str = "application/pdf"

    def attachment(self) -> dict[str, Any]:
        """Return the chat content part referencing this document."""

        if self.url:
            file_data = self.url
        elif self.data is not None:
            encoded = base64.b64encode(self.data).decode("ascii")
            file_data = f"data:{self.mime_type};base64,{encoded}"
        else:
            raise TranscriptionError(
                f"No document content available for {self.filename}"
            )
        return {
            "type": "file",
            "file": {"filename": self.filename, "file_data": file_data},
        }


@dataclass
class ExtractionCandidate:
    """An event-shaped record that has not been persisted yet."""

    event_date: str
    start_time: str
    end_time: str | None
    description: str
    source_pdf: str
    document_id: str | None = None

    def to_event(self) -> Event:
        return Event(
            event_date=date.fromisoformat(self.event_date),
            start_time=_parse_clock(self.start_time),
            end_time=_parse_clock(self.end_time) if self.end_time else None,
            description=self.description,
            source_pdf=self.source_pdf,
            document_id=self.document_id,
        )


@dataclass
class ExtractionResult:
    candidates: list[ExtractionCandidate] = field(default_factory=list)
    confidence: float | None = None
    degraded: bool = False


def _parse_clock(value: str) -> time:
    return time.fromisoformat(value)


def load_prompt(override: Path | None, default_name: str) -> str:
    """Read an instruction set from ``override`` or the bundled prompt file."""

    path = override or DEFAULT_PROMPTS_DIR / default_name
    return path.read_text(encoding="utf-8").strip()


def decode_payload(content: str) -> Mapping[str, Any] | None:
    """Return the JSON object in ``content`` or ``None`` when there is none."""

    text = (content or "").strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        payload = json.loads(text)
    except ValueError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            payload = json.loads(text[start : end + 1])
        except ValueError:
            return None

    return payload if isinstance(payload, dict) else None


def _clamp_confidence(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0.0, min(100.0, float(value)))


class ExtractionAgent:
    """Extract candidate events from one document."""

    def __init__(
        self,
        settings: Settings,
        llm: LLMService | None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._settings = settings
        self._llm = llm
        self._today = today
        self._offline = settings.llm_provider.lower() == "rules"
        self.transcription_prompt = load_prompt(
            settings.transcription_prompt_path, TRANSCRIPTION_PROMPT_FILE
        )
        self.extraction_prompt = load_prompt(
            settings.extraction_prompt_path, EXTRACTION_PROMPT_FILE
        )

    @property
    def needs_text(self) -> bool:
        """Whether the configured strategy transcribes before parsing."""

        return self._offline or self._settings.extraction_strategy == "two_pass"

    @property
    def needs_bytes(self) -> bool:
        return self.needs_text and (
            self._offline or self._settings.transcription_engine == "pymupdf"
        )

    def extract(
        self, source: DocumentSource, *, document_id: str | None = None
    ) -> ExtractionResult:
        """Return the candidates found in ``source``, stamped with its filename."""

        if self._offline:
            text = source.text if source.text is not None else self.transcribe(source)
            lines = scan_schedule_lines(text, default_date=self._today())
            candidates = [
                ExtractionCandidate(
                    event_date=line.event_date,
                    start_time=line.start_time,
                    end_time=line.end_time,
                    description=line.description,
                    source_pdf=source.filename,
                    document_id=document_id,
                )
                for line in lines
            ]
            LOGGER.info(
                "Rules extraction found %d events in %s", len(candidates), source.filename
            )
            return ExtractionResult(candidates=candidates)

        if source.text is None and not self.needs_text:
            user_content: Any = [
                {
                    "type": "text",
                    "text": f"Source file: {source.filename}\n"
                    "Extract every event from the attached document.",
                },
                source.attachment(),
            ]
        else:
            text = source.text if source.text is not None else self.transcribe(source)
            if not text.strip():
                LOGGER.info("No text found in %s; nothing to extract", source.filename)
                return ExtractionResult()
            user_content = f"Source file: {source.filename}\n\nDocument text:\n{text}"

        return self.parse_events(
            user_content, filename=source.filename, document_id=document_id
        )

    def transcribe(self, source: DocumentSource) -> str:
        """Return the document's raw text, preserving date and time tokens."""

        if source.text is not None:
            return source.text

        if self._offline or self._settings.transcription_engine == "pymupdf":
            if source.data is None:
                raise TranscriptionError(
                    f"Local transcription needs the bytes of {source.filename}"
                )
            text = extract_text_pymupdf(source.data)
            LOGGER.info(
                "Transcribed %s locally (%d characters)", source.filename, len(text)
            )
            return text

        result = self._require_llm().generate(
            messages=[
                {"role": "system", "content": self.transcription_prompt},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": "Transcribe this document, keeping every date "
                            "and time token exactly as written.",
                        },
                        source.attachment(),
                    ],
                },
            ],
            metadata={"stage": "transcribe", "filename": source.filename},
        )
        LOGGER.info(
            "Transcribed %s via completion service (%d characters)",
            source.filename,
            len(result.content),
        )
        return result.content

    def parse_events(
        self,
        user_content: str | Sequence[Mapping[str, Any]],
        *,
        filename: str,
        document_id: str | None = None,
    ) -> ExtractionResult:
        """Request the structured event list and shape it into candidates."""

        result = self._require_llm().generate(
            messages=[
                {"role": "system", "content": self.extraction_prompt},
                {"role": "user", "content": user_content},
            ],
            json_mode=True,
            metadata={"stage": "extract", "filename": filename},
        )

        payload = decode_payload(result.content)
        if payload is None:
            LOGGER.warning(
                "Unparseable extraction payload for %s; treating as no events", filename
            )
            return ExtractionResult(degraded=True)

        raw_events = payload.get("events")
        if not isinstance(raw_events, list):
            LOGGER.warning(
                "Extraction payload for %s has no events list; treating as no events",
                filename,
            )
            return ExtractionResult(
                confidence=_clamp_confidence(payload.get("confidence")), degraded=True
            )

        candidates = self.shape_candidates(
            raw_events, filename=filename, document_id=document_id
        )
        LOGGER.info("Extracted %d events from %s", len(candidates), filename)
        return ExtractionResult(
            candidates=candidates,
            confidence=_clamp_confidence(payload.get("confidence")),
        )

    def shape_candidates(
        self,
        raw_events: Sequence[Any],
        *,
        filename: str,
        document_id: str | None = None,
    ) -> list[ExtractionCandidate]:
        """Repair and canonicalise raw event objects; unresolved fields fall back."""

        candidates: list[ExtractionCandidate] = []
        context_date: str | None = None

        for index, raw in enumerate(raw_events):
            if not isinstance(raw, Mapping):
                LOGGER.warning("Skipping non-object event #%d in %s: %r", index, filename, raw)
                continue

            event_date = self._resolve_date(raw.get("event_date") or raw.get("date"), context_date)
            if event_date is None:
                event_date = context_date or self._today().isoformat()
                LOGGER.warning(
                    "Event #%d in %s has no usable date (%r); using %s",
                    index,
                    filename,
                    raw.get("event_date"),
                    event_date,
                )
            context_date = event_date

            start, range_end = self._resolve_time(raw.get("start_time"))
            if start is None:
                LOGGER.warning(
                    "Event #%d in %s has no usable start time (%r); using %s",
                    index,
                    filename,
                    raw.get("start_time"),
                    FALLBACK_START_TIME,
                )
                start = FALLBACK_START_TIME

            end, _ = self._resolve_time(raw.get("end_time"))
            if end is None:
                end = range_end

            description = str(raw.get("description") or "").strip() or FALLBACK_DESCRIPTION

            candidates.append(
                ExtractionCandidate(
                    event_date=event_date,
                    start_time=start,
                    end_time=end,
                    description=description,
                    source_pdf=filename,
                    document_id=document_id,
                )
            )

        return candidates

    def _resolve_date(self, value: Any, context_date: str | None) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        value = value.strip()
        if is_canonical_date(value):
            return value
        reference = date.fromisoformat(context_date) if context_date else self._today()
        return normalize_date(value, reference=reference).value

    def _resolve_time(self, value: Any) -> tuple[str | None, str | None]:
        # JSON numbers such as 1540 or 600 are military times.
        if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 2400:
            value = f"{value:04d}"
        if not isinstance(value, str) or not value.strip():
            return None, None
        repaired = repair_time(value)
        if is_canonical_time(repaired):
            return repaired, None
        parsed = normalize_time(value)
        return parsed.start, parsed.end

    def _require_llm(self) -> LLMService:
        if self._llm is None:
            raise RuntimeError("No completion service configured for extraction")
        return self._llm


__all__ = [
    "DocumentSource",
    "ExtractionAgent",
    "ExtractionCandidate",
    "ExtractionResult",
    "decode_payload",
    "load_prompt",
]
