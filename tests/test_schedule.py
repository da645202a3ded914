"""Tests for durations, jitter and the daily-submit gate."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from tkproxy.errors import InvalidConfigError, InvalidDurationError
from tkproxy.services.schedule import (
    compute_wait_with_jitter,
    parse_duration,
    should_run_daily_submit,
    utc_date_string,
    utc_now_iso,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("30s", 30_000),
        ("10m", 600_000),
        ("5h", 5 * 3_600_000),
        ("1d", 86_400_000),
        (" 2H ", 7_200_000),
    ],
)
def test_parse_duration(value: str, expected: int) -> None:
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["0h", "-2h", "12", "abc", "1.5h", "3w", ""])
def test_parse_duration_rejects_bad_input(value: str) -> None:
    with pytest.raises(InvalidDurationError):
        parse_duration(value)


def test_should_run_daily_submit_gate() -> None:
    before = datetime(2026, 2, 18, 1, 30, tzinfo=UTC)
    after = datetime(2026, 2, 18, 3, 30, tzinfo=UTC)

    assert should_run_daily_submit(before, None, 2) is False
    assert should_run_daily_submit(after, None, 2) is True
    assert should_run_daily_submit(after, "2026-02-18", 2) is False
    assert should_run_daily_submit(after, "2026-02-17", 2) is True


def test_should_run_daily_submit_uses_utc_date() -> None:
    # 23:30 at UTC-5 is 04:30 the next day in UTC.
    local = datetime(2026, 2, 17, 23, 30, tzinfo=timezone(timedelta(hours=-5)))

    assert should_run_daily_submit(local, "2026-02-17", 2) is True
    assert should_run_daily_submit(local, "2026-02-18", 2) is False


@pytest.mark.parametrize("hour", [-1, 24, True])
def test_should_run_daily_submit_rejects_bad_hour(hour: int) -> None:
    with pytest.raises(InvalidConfigError):
        should_run_daily_submit(datetime(2026, 2, 18, tzinfo=UTC), None, hour)


def test_compute_wait_with_jitter_bounds() -> None:
    assert compute_wait_with_jitter(1000, 0) == 1000
    assert compute_wait_with_jitter(1000, 500, random_fn=lambda: 0.0) == 1000
    assert compute_wait_with_jitter(1000, 500, random_fn=lambda: 0.999) == 1499
    for _ in range(50):
        assert 1000 <= compute_wait_with_jitter(1000, 500) < 1500


@pytest.mark.parametrize(("base", "jitter"), [(0, 10), (-5, 10), (10, -1)])
def test_compute_wait_with_jitter_rejects_bad_values(base: int, jitter: int) -> None:
    with pytest.raises(InvalidConfigError):
        compute_wait_with_jitter(base, jitter)


def test_utc_formatting() -> None:
    moment = datetime(2026, 2, 18, 3, 4, 5, 678901, tzinfo=UTC)
    assert utc_now_iso(moment) == "2026-02-18T03:04:05.678Z"
    assert utc_date_string(moment) == "2026-02-18"
    assert utc_now_iso().endswith("Z")
