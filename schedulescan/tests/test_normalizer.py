"""Tests for date and time canonicalisation."""

from __future__ import annotations

from datetime import date, datetime, time

import pytest

from schedulescan.models import Event
from schedulescan.services.normalizer import (
    event_window,
    is_canonical_time,
    normalize_date,
    normalize_time,
    repair_time,
    scan_schedule_lines,
)


@pytest.mark.parametrize(
    ("token", "expected"),
    [("0000", "00:00:00"), ("0730", "07:30:00"), ("1540", "15:40:00"), ("2359", "23:59:00")],
)
def test_military_time_gets_seconds(token: str, expected: str) -> None:
    result = normalize_time(token)
    assert result.start == expected
    assert result.end is None


def test_military_range_splits_into_start_and_end() -> None:
    result = normalize_time("1724-1830")
    assert (result.start, result.end) == ("17:24:00", "18:30:00")


@pytest.mark.parametrize("token", ["1540 HRS", "1540 HOURS", "1540hrs", "@ 1540 HOURS"])
def test_suffixed_military_time(token: str) -> None:
    assert normalize_time(token).start == "15:40:00"


def test_clock_notations() -> None:
    assert normalize_time("3:40 PM").start == "15:40:00"
    assert normalize_time("12:05 am").start == "00:05:00"
    assert normalize_time("08:15").start == "08:15:00"
    assert normalize_time("0800 to 1000 HRS").end == "10:00:00"


def test_military_2400_is_midnight() -> None:
    assert normalize_time("2400").start == "00:00:00"


@pytest.mark.parametrize("token", ["", "soon", "2560", "13:00 PM", "99:99"])
def test_unparseable_time_is_unresolved(token: str) -> None:
    result = normalize_time(token)
    assert not result.resolved
    assert result.start is None


def test_repair_appends_seconds_and_is_idempotent() -> None:
    assert repair_time("15:40") == "15:40:00"
    assert repair_time("15:40:00") == "15:40:00"
    assert repair_time(repair_time("07:05")) == "07:05:00"
    assert repair_time(None) is None
    assert is_canonical_time(repair_time("23:10"))


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("APR. 19, 2024", "2024-04-19"),
        ("April 19 2024", "2024-04-19"),
        ("19 APRIL 2024", "2024-04-19"),
        ("20/10/2025", "2025-10-20"),
        ("2024-04-20", "2024-04-20"),
        ("Saturday, 20th April 2024", "2024-04-20"),
    ],
)
def test_dates_normalise(token: str, expected: str) -> None:
    assert normalize_date(token).value == expected


def test_missing_year_comes_from_reference() -> None:
    result = normalize_date("OCT 21", reference=date(2023, 5, 1))
    assert result.value == "2023-10-21"


def test_numeric_dates_are_day_first_unless_impossible() -> None:
    assert normalize_date("03/04/2024").value == "2024-04-03"
    assert normalize_date("04/23/2024").value == "2024-04-23"


@pytest.mark.parametrize("token", ["", "tomorrow", "31/02/2024", "FOO 12"])
def test_unparseable_date_is_unresolved(token: str) -> None:
    assert not normalize_date(token).resolved


def test_event_window_treats_earlier_end_as_next_day() -> None:
    start, end = event_window("2024-04-20", "23:00:00", "01:30:00")
    assert start == datetime(2024, 4, 20, 23, 0)
    assert end == datetime(2024, 4, 21, 1, 30)

    start, end = event_window("2024-04-20", "09:00:00", None)
    assert end is None


def test_scanner_reads_notice_of_readiness_line() -> None:
    lines = scan_schedule_lines(
        "ON APR. 19, 2024 @ 1540 HOURS: NOTICE OF READINESS TENDERED"
    )

    assert len(lines) == 1
    line = lines[0]
    assert line.event_date == "2024-04-19"
    assert line.start_time == "15:40:00"
    assert line.end_time is None
    assert line.description == "NOTICE OF READINESS TENDERED"


def test_scanner_carries_date_context_forward() -> None:
    text = "\n".join(
        [
            "APRIL 20, 2024",
            "0600 HRS: PILOT ON BOARD",
            "1724-1830 HRS: VESSEL DEPARTED",
            "21/04/2024",
            "0900: ARRIVED ANCHORAGE",
        ]
    )

    lines = scan_schedule_lines(text)

    assert [line.event_date for line in lines] == ["2024-04-20", "2024-04-20", "2024-04-21"]
    departed = lines[1]
    assert departed.start_time == "17:24:00"
    assert departed.end_time == "18:30:00"
    assert departed.description == "VESSEL DEPARTED"


def test_scanner_uses_default_date_without_context() -> None:
    lines = scan_schedule_lines("1200 LUNCH", default_date=date(2024, 1, 2))
    assert lines[0].event_date == "2024-01-02"


@pytest.mark.parametrize(
    ("line", "event_date", "start_time", "description"),
    [
        ("OCT 21 0800 PILOT ON BOARD", "2024-10-21", "08:00:00", "PILOT ON BOARD"),
        ("APR 19 1540 HRS NOR TENDERED", "2024-04-19", "15:40:00", "NOR TENDERED"),
        ("APR 19 2000 HRS ALL FAST", "2024-04-19", "20:00:00", "ALL FAST"),
        ("21 OCT 1930 ANCHOR AWEIGH", "2024-10-21", "19:30:00", "ANCHOR AWEIGH"),
        ("APRIL 20 2023 0600 PILOT ON BOARD", "2023-04-20", "06:00:00", "PILOT ON BOARD"),
    ],
)
def test_scanner_keeps_clock_time_after_month_and_day(
    line: str, event_date: str, start_time: str, description: str
) -> None:
    """A time written straight after ``MON DD`` is not mistaken for a year."""

    [event] = scan_schedule_lines(line, default_date=date(2024, 1, 1))

    assert event.event_date == event_date
    assert event.start_time == start_time
    assert event.description == description


def test_event_spans_midnight_when_end_precedes_start() -> None:
    overnight = Event(
        event_date=date(2024, 4, 20),
        start_time=time(23, 0),
        end_time=time(1, 30),
        description="DISCHARGING",
        source_pdf="sof.pdf",
    )
    daytime = Event(
        event_date=date(2024, 4, 20),
        start_time=time(9, 0),
        end_time=time(10, 0),
        description="PILOT",
        source_pdf="sof.pdf",
    )
    open_ended = Event(
        event_date=date(2024, 4, 20),
        start_time=time(9, 0),
        description="ANCHORED",
        source_pdf="sof.pdf",
    )

    assert overnight.spans_midnight
    assert not daytime.spans_midnight
    assert not open_ended.spans_midnight
