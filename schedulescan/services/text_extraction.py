"""Local text-layer extraction for PDFs using PyMuPDF."""

from __future__ import annotations

import re
from typing import List

import fitz

from ..utils.errors import TranscriptionError

LINE_Y_TOLERANCE = 2.0

NBSPS = "\u00A0\u2007\u2009"
SOFT_HYPH = "\u00AD"
DOT_VARIANTS_RE = re.compile(r"(\d)[\u2024\u2027\u00B7](\d)")
# OCR'd digits: "l540" / "15O0" inside a numeric run.
CONFUSABLE_ONE_RE = re.compile(r"(?<=\d)[Il|](?=\d)|[Il|](?=\d{3}\b)")
CONFUSABLE_ZERO_RE = re.compile(r"(?<=\d)[oO](?=\d)")


def normalize_numeric_artifacts(text: str) -> str:
    """Repair the digit confusions that break military time tokens."""

    text = text.replace(SOFT_HYPH, "")
    for ch in NBSPS:
        text = text.replace(ch, " ")
    text = DOT_VARIANTS_RE.sub(r"\1.\2", text)
    text = CONFUSABLE_ONE_RE.sub("1", text)
    text = CONFUSABLE_ZERO_RE.sub("0", text)
    return re.sub(r"[ \t]+", " ", text).strip()


def _group_words_into_lines(words: list) -> List[str]:
    lines: List[str] = []
    if not words:
        return lines

    words.sort(key=lambda w: (w[1], w[0]))
    current_y = None
    buffer: list = []

    def flush() -> None:
        nonlocal buffer
        if buffer:
            buffer.sort(key=lambda w: w[0])
            text = " ".join(entry[4] for entry in buffer)
            if text.strip():
                lines.append(text)
        buffer = []

    for word in words:
        y0 = word[1]
        if current_y is None or abs(y0 - current_y) > LINE_Y_TOLERANCE:
            flush()
            current_y = y0
        buffer.append(word)
    flush()
    return lines


def extract_text_pymupdf(data: bytes) -> str:
    """Return the PDF's text layer, one visual line per output line."""

    try:
        document = fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise TranscriptionError(f"Unreadable PDF: {exc}") from exc

    output: List[str] = []
    with document:
        for page in document:
            for line in _group_words_into_lines(page.get_text("words")):
                output.append(normalize_numeric_artifacts(line))

    return "\n".join(output)


__all__ = ["extract_text_pymupdf", "normalize_numeric_artifacts"]
