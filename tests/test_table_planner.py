import math
from datetime import datetime, timedelta, timezone

import pytest

from cdr_extraction.domain import ExtractionWindow, TableRole
from cdr_extraction.errors import InvalidFormat
from cdr_extraction.packed_date import PackedTimestamp
from cdr_extraction.table_planner import TableSetPlanner
from cdr_extraction.window_resolver import WindowRequest, resolve_window


def _window(start: str, end: str) -> ExtractionWindow:
    return ExtractionWindow(PackedTimestamp.parse(start), PackedTimestamp.parse(end))


def _names(tables):
    return [t.name for t in tables]


def test_quarter_hour_window_spans_three_days():
    tables = TableSetPlanner("cdr").plan_tables(_window("20130423164500", "20130423170000"))
    assert _names(tables) == ["cdr20130422", "cdr20130423", "cdr20130424"]


def test_first_table_is_authoritative_and_the_rest_supplementary():
    tables = TableSetPlanner("cdr").plan_tables(_window("20130423164500", "20130423170000"))
    assert [t.role for t in tables] == [TableRole.AUTHORITATIVE, TableRole.SUPPLEMENTARY, TableRole.SUPPLEMENTARY]
    assert tables[0].is_authoritative
    assert not any(t.is_authoritative for t in tables[1:])


def test_exclusive_end_at_midnight_does_not_add_a_day():
    tables = TableSetPlanner("cdr").plan_tables(_window("20130424000000", "20130425000000"))
    assert _names(tables) == ["cdr20130423", "cdr20130424", "cdr20130425"]


def test_window_straddling_midnight():
    tables = TableSetPlanner("cdr").plan_tables(_window("20130424235000", "20130425000500"))
    assert _names(tables) == ["cdr20130423", "cdr20130424", "cdr20130425", "cdr20130426"]


def test_month_and_year_boundaries():
    tables = TableSetPlanner("sw_").plan_tables(_window("20130101000000", "20130101001500"))
    assert _names(tables) == ["sw_20121231", "sw_20130101", "sw_20130102"]

    tables = TableSetPlanner("cdr").plan_tables(_window("20130301000000", "20130301001500"))
    assert _names(tables) == ["cdr20130228", "cdr20130301", "cdr20130302"]


def test_multi_day_window_covers_every_day_plus_one_each_side():
    tables = TableSetPlanner("cdr").plan_tables(_window("20130420120000", "20130423060000"))
    assert _names(tables) == [f"cdr201304{d}" for d in range(19, 25)]


@pytest.mark.parametrize(
    "request_kwargs",
    [{}, {"utc_offset_hours": -7}, {"utc_offset_hours": 5}, {"yesterday": True}],
)
def test_candidate_count_for_resolved_windows(request_kwargs):
    planner = TableSetPlanner("cdr")
    base = datetime(2013, 2, 27, 0, 0, 1, tzinfo=timezone.utc)
    for hours in range(0, 72, 5):
        window = resolve_window(base + timedelta(hours=hours), WindowRequest(**request_kwargs))
        tables = planner.plan_tables(window)

        span = window.end.value - window.start.value
        assert len(tables) == math.ceil(span / timedelta(days=1)) + 2

        dates = [t.table_date for t in tables]
        assert dates == sorted(set(dates))
        assert all(later - earlier == timedelta(days=1) for earlier, later in zip(dates, dates[1:]))


def test_prefix_must_form_an_identifier():
    with pytest.raises(InvalidFormat):
        TableSetPlanner("cdr-")
