from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from coffeechat.services.windows import (
    DEFAULT_WINDOW,
    SignupWindow,
    day_of_week,
    describe_window,
    get_week_start_date,
    history_since,
    is_window_open,
    resolve_window,
)

CT = ZoneInfo("America/Chicago")


def test_resolve_window_defaults_when_missing():
    assert resolve_window(None) == DEFAULT_WINDOW
    assert resolve_window({}) == SignupWindow(5, 14, 19)


def test_resolve_window_falls_back_per_field():
    window = resolve_window({"signup_day_of_week": 1, "signup_start_hour": None, "signup_end_hour": "bogus"})
    assert window == SignupWindow(1, 14, 19)


def test_resolve_window_rejects_out_of_range_values():
    window = resolve_window({"signup_day_of_week": 9, "signup_start_hour": -1, "signup_end_hour": 24})
    assert window == DEFAULT_WINDOW


@pytest.mark.parametrize(
    "start,end",
    [(20, 10), (19, 19), (18, 3), (23, 23), (0, 0), (22, 1)],
)
def test_resolved_end_always_after_start(start, end):
    window = resolve_window({"signup_day_of_week": 3, "signup_start_hour": start, "signup_end_hour": end})
    assert window.end_hour > window.start_hour
    assert 0 <= window.start_hour <= 23
    assert 1 <= window.end_hour <= 23


def test_inverted_window_uses_default_end_when_it_fits():
    window = resolve_window({"signup_start_hour": 10, "signup_end_hour": 8})
    assert (window.start_hour, window.end_hour) == (10, 19)


def test_inverted_window_late_start_is_clamped():
    window = resolve_window({"signup_start_hour": 21, "signup_end_hour": 8})
    assert (window.start_hour, window.end_hour) == (21, 22)


def test_day_of_week_uses_sunday_zero():
    assert day_of_week(datetime(2026, 10, 18, 12, tzinfo=CT)) == 0
    assert day_of_week(datetime(2026, 10, 16, 12, tzinfo=CT)) == 5


def test_is_window_open_boundaries():
    schedule = {"signup_day_of_week": 1, "signup_start_hour": 8, "signup_end_hour": 12}
    assert is_window_open(datetime(2026, 10, 12, 8, 0, tzinfo=CT), schedule)
    assert is_window_open(datetime(2026, 10, 12, 11, 59, tzinfo=CT), schedule)
    assert not is_window_open(datetime(2026, 10, 12, 12, 0, tzinfo=CT), schedule)
    assert not is_window_open(datetime(2026, 10, 12, 7, 59, tzinfo=CT), schedule)
    assert not is_window_open(datetime(2026, 10, 13, 9, 0, tzinfo=CT), schedule)


def test_is_window_open_evaluates_in_reference_timezone():
    # 20:00 UTC on a Friday in October is 15:00 Chicago time
    assert is_window_open(datetime(2026, 10, 16, 20, 0, tzinfo=timezone.utc), None)
    # 01:00 UTC Saturday is still Friday evening in Chicago, but after close
    assert not is_window_open(datetime(2026, 10, 17, 1, 0, tzinfo=timezone.utc), None)


def test_week_start_is_monday_in_reference_timezone():
    assert get_week_start_date(datetime(2026, 10, 18, 23, 59, tzinfo=CT)) == date(2026, 10, 12)
    assert get_week_start_date(datetime(2026, 10, 19, 0, 0, tzinfo=CT)) == date(2026, 10, 19)

def test_history_window_counts_current_week():
    now = datetime(2026, 10, 16, tzinfo=CT)
    assert history_since(now, 2) == date(2026, 10, 5)
    assert history_since(now, 12) == date(2026, 7, 27)
    assert history_since(now, 1) == date(2026, 10, 12)


def test_describe_window():
    assert describe_window(SignupWindow(5, 14, 19)) == "Friday from 2:00 PM to 7:00 PM CT"
