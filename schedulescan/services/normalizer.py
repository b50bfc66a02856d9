"""Canonicalisation of the date and time notations found in schedule documents.

Canonical forms are ``YYYY-MM-DD`` for dates and ``HH:MM:SS`` (24-hour) for
times. Every parser returns a result object instead of raising; a result with
no value is "unresolved" and the caller decides on a fallback.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

MONTHS = {
    "JAN": 1,
    "FEB": 2,
    "MAR": 3,
    "APR": 4,
    "MAY": 5,
    "JUN": 6,
    "JUL": 7,
    "AUG": 8,
    "SEP": 9,
    "OCT": 10,
    "NOV": 11,
    "DEC": 12,
}
_MONTH_NAMES = (
    "JANUARY FEBRUARY MARCH APRIL MAY JUNE JULY AUGUST SEPTEMBER OCTOBER "
    "NOVEMBER DECEMBER SEPT"
).split()

_CANONICAL_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d):([0-5]\d)$")
_CANONICAL_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_SUFFIX = r"(?:HOURS|HOUR|HRS|HR|H|LT)\b\.?"
_SUFFIX_RE = re.compile(rf"\s*{_SUFFIX}\s*$", re.I)
_PREFIX_RE = re.compile(r"^(?:@|AT\b|FROM\b)\s*", re.I)
_RANGE_SPLIT_RE = re.compile(r"\s*(?:-|–|—|\bTO\b)\s*", re.I)
_CLOCK_RE = re.compile(
    r"""^(?:
        (?P<h>\d{1,2}):(?P<m>\d{2})(?::(?P<s>\d{2}))?
        |(?P<mil>\d{3,4})
    )\s*(?P<ampm>[AP])?\.?(?:M\.?)?$""",
    re.I | re.X,
)

_WEEKDAY_RE = re.compile(
    r"^(?:MON|TUE|TUES|WED|THU|THUR|THURS|FRI|SAT|SUN)[A-Z]*\.?,?\s+", re.I
)
_ORDINAL_RE = re.compile(r"(\d{1,2})(?:ST|ND|RD|TH)\b", re.I)
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_NUMERIC_DATE_RE = re.compile(r"^(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{2}|\d{4})$")
_MONTH_FIRST_RE = re.compile(r"^([A-Z]+)\s+(\d{1,2})(?:\s+(\d{4}))?$")
_DAY_FIRST_RE = re.compile(r"^(\d{1,2})\s+([A-Z]+)(?:\s+(\d{4}))?$")


@dataclass(frozen=True)
class TimeResult:
    """Outcome of normalising one time token or range."""

    raw: str
    start: str | None = None
    end: str | None = None

    @property
    def resolved(self) -> bool:
        return self.start is not None


@dataclass(frozen=True)
class DateResult:
    """Outcome of normalising one date token."""

    raw: str
    value: str | None = None

    @property
    def resolved(self) -> bool:
        return self.value is not None

    def as_date(self) -> date | None:
        return date.fromisoformat(self.value) if self.value else None


def repair_time(value: str | None) -> str | None:
    """Append ``:00`` to ``HH:MM`` strings; already-canonical values pass through."""

    if value is None:
        return None
    stripped = value.strip()
    if len(stripped) == 5 and stripped[2] == ":":
        return f"{stripped}:00"
    return stripped


def is_canonical_time(value: str | None) -> bool:
    return bool(value) and bool(_CANONICAL_TIME_RE.match(value))


def is_canonical_date(value: str | None) -> bool:
    if not value or not _CANONICAL_DATE_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _canonical_clock(token: str) -> str | None:
    text = _PREFIX_RE.sub("", token.strip())
    text = _SUFFIX_RE.sub("", text).strip()
    match = _CLOCK_RE.match(text)
    if not match:
        return None

    if match.group("mil"):
        digits = match.group("mil")
        hour, minute, second = int(digits[:-2]), int(digits[-2:]), 0
    else:
        hour = int(match.group("h"))
        minute = int(match.group("m"))
        second = int(match.group("s") or 0)

    meridiem = (match.group("ampm") or "").upper()
    if meridiem:
        if not 1 <= hour <= 12:
            return None
        if meridiem == "P" and hour < 12:
            hour += 12
        elif meridiem == "A" and hour == 12:
            hour = 0

    # Military 2400 closes the day; it is stored as midnight.
    if hour == 24 and minute == 0 and second == 0:
        hour = 0
    if hour > 23 or minute > 59 or second > 59:
        return None
    return f"{hour:02d}:{minute:02d}:{second:02d}"


def normalize_time(token: str | None) -> TimeResult:
    """Normalise ``HHMM``, ``HHMM-HHMM``, ``HHMM HRS`` and clock notations."""

    if token is None:
        return TimeResult(raw="")
    raw = token
    text = token.strip().upper()
    if not text:
        return TimeResult(raw=raw)

    parts = _RANGE_SPLIT_RE.split(text, maxsplit=1)
    if len(parts) == 2 and parts[0] and parts[1]:
        start = _canonical_clock(parts[0])
        if start is None:
            return TimeResult(raw=raw)
        return TimeResult(raw=raw, start=start, end=_canonical_clock(parts[1]))

    return TimeResult(raw=raw, start=_canonical_clock(text))


def _month_number(word: str) -> int | None:
    word = word.upper()
    if len(word) < 3:
        return None
    number = MONTHS.get(word[:3])
    if number is None:
        return None
    if len(word) > 3 and not any(name.startswith(word) for name in _MONTH_NAMES):
        return None
    return number


def _build_date(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date(token: str | None, reference: date | None = None) -> DateResult:
    """Normalise a natural or numeric date; missing years come from ``reference``."""

    if token is None:
        return DateResult(raw="")
    raw = token
    text = token.strip().upper()
    if not text:
        return DateResult(raw=raw)

    text = re.sub(r"^ON\s+", "", text)
    text = _WEEKDAY_RE.sub("", text)
    text = _ORDINAL_RE.sub(r"\1", text)

    match = _ISO_DATE_RE.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return DateResult(raw=raw, value=_build_date(year, month, day))

    match = _NUMERIC_DATE_RE.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        if year < 100:
            year += 2000
        day, month = first, second
        if second > 12 >= first:
            day, month = second, first
        return DateResult(raw=raw, value=_build_date(year, month, day))

    words = re.sub(r"[.,]", " ", text)
    words = re.sub(r"\s+", " ", words).strip()
    fallback_year = (reference or date.today()).year

    match = _MONTH_FIRST_RE.match(words)
    if match:
        month = _month_number(match.group(1))
        if month is not None:
            year = int(match.group(3)) if match.group(3) else fallback_year
            return DateResult(raw=raw, value=_build_date(year, month, int(match.group(2))))

    match = _DAY_FIRST_RE.match(words)
    if match:
        month = _month_number(match.group(2))
        if month is not None:
            year = int(match.group(3)) if match.group(3) else fallback_year
            return DateResult(raw=raw, value=_build_date(year, month, int(match.group(1))))

    return DateResult(raw=raw)


def event_window(
    event_date: date | str, start_time: time | str, end_time: time | str | None
) -> tuple[datetime, datetime | None]:
    """Return concrete start/end datetimes; an end before the start is next-day."""

    day = date.fromisoformat(event_date) if isinstance(event_date, str) else event_date
    start = time.fromisoformat(start_time) if isinstance(start_time, str) else start_time
    start_dt = datetime.combine(day, start)
    if end_time is None:
        return start_dt, None
    end = time.fromisoformat(end_time) if isinstance(end_time, str) else end_time
    end_dt = datetime.combine(day, end)
    if end_dt < start_dt:
        end_dt += timedelta(days=1)
    return start_dt, end_dt


# ---------------------------------------------------------------------------
# Line scanner used by the offline ``rules`` provider.
# ---------------------------------------------------------------------------

_MONTH_WORD = r"\b(?:JAN|FEB|MAR|APR|MAY|JUN|JUL|AUG|SEP|OCT|NOV|DEC)[A-Z]*\.?"
# A four-digit token after the day is a year only when it cannot be the
# line's clock time: 19xx/20xx, no hours suffix or range after it, and either
# nothing else on the line or another number still to come.
_SCAN_YEAR = (
    r"(?:,?\s+(?:19|20)\d{2}"
    rf"(?!\d|\s*(?:-|–|—|:|\bTO\b|{_SUFFIX}))"
    r"(?=\s*(?:[,;.)]|$)|\D*\d))?"
)
_DATE_SEARCH_RE = re.compile(
    r"(?<![\d/.\-])(?:"
    r"\d{4}-\d{1,2}-\d{1,2}"
    r"|\d{1,2}[/.]\d{1,2}[/.]\d{2,4}"
    rf"|{_MONTH_WORD}\s+\d{{1,2}}(?:ST|ND|RD|TH)?{_SCAN_YEAR}"
    rf"|\d{{1,2}}(?:ST|ND|RD|TH)?\s+{_MONTH_WORD}{_SCAN_YEAR}"
    r")(?![\d/])",
    re.I,
)
_SCAN_CLOCK = r"(?:\d{1,2}:\d{2}(?::\d{2})?(?:\s*[AP]\.?M\.?)?|\d{4}(?![\d/.]|:\d))"
_TIME_SEARCH_RE = re.compile(
    rf"(?<![\d/.:])(?P<start>{_SCAN_CLOCK})(?:\s*{_SUFFIX})?"
    rf"(?:\s*(?:-|–|—|\bTO\b)\s*(?P<end>{_SCAN_CLOCK})(?:\s*{_SUFFIX})?)?",
    re.I,
)
_LEADING_NOISE_RE = re.compile(r"^(?:[\s@:;,\-–]|\bON\b|\bAT\b|\bFROM\b)+", re.I)
_TRAILING_NOISE_RE = re.compile(r"[\s@:;,\-–]+$")


@dataclass(frozen=True)
class ScheduleLine:
    """An event read from one line of schedule text."""

    event_date: str
    start_time: str
    end_time: str | None
    description: str


def _find_time(line: str) -> tuple[re.Match[str], str, str | None] | None:
    for match in _TIME_SEARCH_RE.finditer(line):
        start = _canonical_clock(match.group("start"))
        if start is None:
            continue
        end = _canonical_clock(match.group("end")) if match.group("end") else None
        return match, start, end
    return None


def _clean_description(text: str) -> str:
    text = re.sub(r"\s+", " ", text)
    text = _LEADING_NOISE_RE.sub("", text)
    return _TRAILING_NOISE_RE.sub("", text).strip()


def scan_schedule_lines(
    text: str, *, default_date: date | None = None
) -> list[ScheduleLine]:
    """Read one event per timed line, carrying the last seen date forward.

    A line holding only a date sets the context for the lines after it; lines
    with neither a date nor a time are ignored.
    """

    context = (default_date or date.today()).isoformat()
    reference = default_date
    results: list[ScheduleLine] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        date_match = _DATE_SEARCH_RE.search(line)
        if date_match:
            parsed = normalize_date(date_match.group(0), reference=reference)
            if parsed.resolved:
                context = parsed.value  # type: ignore[assignment]
                reference = parsed.as_date()
                line = line[: date_match.start()] + " " + line[date_match.end() :]

        found = _find_time(line)
        if found is None:
            continue
        match, start, end = found
        description = _clean_description(line[: match.start()] + " " + line[match.end() :])
        if not description:
            continue
        results.append(
            ScheduleLine(
                event_date=context,
                start_time=start,
                end_time=end,
                description=description,
            )
        )

    return results


__all__ = [
    "DateResult",
    "ScheduleLine",
    "TimeResult",
    "event_window",
    "is_canonical_date",
    "is_canonical_time",
    "normalize_date",
    "normalize_time",
    "repair_time",
    "scan_schedule_lines",
]
