from datetime import datetime, timedelta, timezone

import pytest

from postpulse.aggregation.billing_cycle import (
    current_and_previous_window,
    normalize_timezone,
    parse_period_key,
    resolve_anchor_day,
    shift_month,
    window_for_key,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


TIMEZONES = ["UTC", "Asia/Tokyo", "America/New_York", "Europe/London", "Australia/Lord_Howe"]
ANCHORS = [1, 15, 28, 29, 30, 31]


@pytest.mark.parametrize("tz_name", TIMEZONES)
@pytest.mark.parametrize("anchor_day", ANCHORS)
def test_windows_tile_and_contain_now(tz_name, anchor_day):
    now = utc(2023, 12, 20, 7, 30)
    for _ in range(60):
        ctx = current_and_previous_window(now, tz_name, anchor_day)
        assert ctx.previous.end_exclusive == ctx.current.start
        assert ctx.current.start <= now < ctx.current.end_exclusive
        assert ctx.previous.start < ctx.previous.end_exclusive

        # The next window starts exactly where this one ends
        following = current_and_previous_window(ctx.current.end_exclusive, tz_name, anchor_day)
        assert following.previous.key == ctx.current.key
        assert following.current.start == ctx.current.end_exclusive

        now += timedelta(days=6, hours=5)


def test_anchor_31_clamps_to_30_in_a_30_day_month():
    ctx = current_and_previous_window(utc(2024, 4, 30, 12), "UTC", 31)

    assert ctx.current_key == "2024-04"
    assert ctx.current_start == utc(2024, 4, 30)
    assert ctx.current_end_exclusive == utc(2024, 5, 31)
    assert ctx.previous_key == "2024-03"
    assert ctx.previous_start == utc(2024, 3, 31)


def test_anchor_31_in_leap_february():
    ctx = current_and_previous_window(utc(2024, 3, 5), "UTC", 31)

    assert ctx.current_key == "2024-02"
    assert ctx.current_start == utc(2024, 2, 29)
    assert ctx.current_end_exclusive == utc(2024, 3, 31)


def test_before_anchor_day_window_started_last_month():
    # 09:00 on Mar 10 in Tokyo, anchor on the 15th
    ctx = current_and_previous_window(utc(2024, 3, 10), "Asia/Tokyo", 15)

    assert ctx.current_key == "2024-02"
    assert ctx.current_start == utc(2024, 2, 14, 15)
    assert ctx.current_end_exclusive == utc(2024, 3, 14, 15)


def test_boundary_uses_local_day_not_utc_day():
    # Still Mar 14 in UTC but already Mar 15 00:30 in Tokyo
    ctx = current_and_previous_window(utc(2024, 3, 14, 15, 30), "Asia/Tokyo", 15)

    assert ctx.current_key == "2024-03"
    assert ctx.current_start == utc(2024, 3, 14, 15)


def test_offsets_follow_dst():
    # New York switches to EDT on 2024-03-10 at 02:00 local
    ctx = current_and_previous_window(utc(2024, 3, 15, 12), "America/New_York", 10)

    assert ctx.current_start == utc(2024, 3, 10, 5)  # EST midnight
    assert ctx.current_end_exclusive == utc(2024, 4, 10, 4)  # EDT midnight
    assert ctx.previous_start == utc(2024, 2, 10, 5)


def test_unknown_timezone_falls_back_to_default():
    assert normalize_timezone("Mars/Olympus_Mons") == "Asia/Tokyo"
    assert normalize_timezone("") == "Asia/Tokyo"
    assert normalize_timezone(None) == "Asia/Tokyo"
    assert normalize_timezone(" Europe/Paris ") == "Europe/Paris"

    ctx = current_and_previous_window(utc(2024, 3, 14, 15, 30), "Not/AZone", 15)
    assert ctx.timezone == "Asia/Tokyo"
    assert ctx.current_start == utc(2024, 3, 14, 15)


def test_anchor_day_is_clamped_to_valid_range():
    assert current_and_previous_window(utc(2024, 3, 5), "UTC", 0).anchor_day == 1
    assert current_and_previous_window(utc(2024, 3, 5), "UTC", 45).anchor_day == 31


def test_window_for_key():
    window = window_for_key("2024-04", "UTC", 31)

    assert window.key == "2024-04"
    assert window.start == utc(2024, 4, 30)
    assert window.end_exclusive == utc(2024, 5, 31)
    assert window.previous_key == "2024-03"
    assert window.previous_start == utc(2024, 3, 31)
    assert window.previous_end_exclusive == window.start


def test_window_for_key_across_year_boundary():
    window = window_for_key("2024-01", "Asia/Tokyo", 1)

    assert window.start == utc(2023, 12, 31, 15)
    assert window.previous_key == "2023-12"
    assert window.previous_start == utc(2023, 11, 30, 15)


def test_window_for_key_matches_current_window():
    now = utc(2024, 7, 21, 3)
    ctx = current_and_previous_window(now, "Europe/London", 20)
    window = window_for_key(ctx.current_key, "Europe/London", 20)

    assert (window.start, window.end_exclusive) == (ctx.current.start, ctx.current.end_exclusive)
    assert (window.previous_key, window.previous_start) == (ctx.previous_key, ctx.previous_start)


@pytest.mark.parametrize("bad_key", ["2024-13", "2024-00", "24-01", "march", ""])
def test_malformed_key_falls_back_to_current_window(bad_key):
    window = window_for_key(bad_key, "UTC", 1, now=utc(2024, 5, 5))
    assert window.key == "2024-05"


def test_parse_period_key():
    assert parse_period_key("2024-03") == (2024, 3)
    assert parse_period_key("2024-3") is None
    assert parse_period_key("2024-12-01") is None


def test_shift_month():
    assert shift_month(2024, 1, -1) == (2023, 12)
    assert shift_month(2024, 12, 1) == (2025, 1)
    assert shift_month(2024, 5, -17) == (2022, 12)


def test_resolve_anchor_day_uses_local_creation_day():
    created = utc(2024, 1, 31, 20)  # Feb 1 05:00 in Tokyo
    assert resolve_anchor_day(created, None, "Asia/Tokyo") == 1
    assert resolve_anchor_day(created, None, "UTC") == 31
    assert resolve_anchor_day(None, utc(2023, 6, 12), "UTC") == 12
    assert resolve_anchor_day(None, None, "UTC") == 1
    # Naive datetimes (as read back from SQLite) are UTC
    assert resolve_anchor_day(datetime(2024, 1, 31, 20), None, "UTC") == 31
