"""Duration parsing, jittered waits and the daily-submit gate."""

from __future__ import annotations

import random
import re
from collections.abc import Callable
from datetime import UTC, datetime

from tkproxy.errors import InvalidConfigError, InvalidDurationError

DURATION_FACTORS_MS: dict[str, int] = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}

_DURATION_RE = re.compile(r"^([0-9]+)([smhd])$")


def parse_duration(value: str) -> int:
    """Parse a duration like ``30m``, ``5h`` or ``1d`` into milliseconds.

    Raises:
        InvalidDurationError: On zero, negative, non-integer or unknown-unit input.
    """
    normalized = str(value).strip().lower()
    match = _DURATION_RE.match(normalized)
    if match is None:
        msg = f"Invalid duration: {value} (expected format like 30m, 5h, 1d)"
        raise InvalidDurationError(msg)
    amount = int(match.group(1))
    if amount <= 0:
        msg = f"Duration must be greater than zero: {value}"
        raise InvalidDurationError(msg)
    return amount * DURATION_FACTORS_MS[match.group(2)]


def utc_date_string(now: datetime) -> str:
    """Return the UTC calendar date of ``now`` as ``YYYY-MM-DD``."""
    return _as_utc(now).strftime("%Y-%m-%d")


def utc_now_iso(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    moment = _as_utc(now or datetime.now(UTC))
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def should_run_daily_submit(
    now: datetime,
    last_submitted_date: str | None,
    submit_hour_utc: int,
) -> bool:
    """Decide whether today's combined submission is due.

    False before ``submit_hour_utc``; afterwards True unless
    ``last_submitted_date`` is already today's UTC date.

    Raises:
        InvalidConfigError: If ``submit_hour_utc`` is not an integer in [0, 23].
    """
    if (
        isinstance(submit_hour_utc, bool)
        or not isinstance(submit_hour_utc, int)
        or not 0 <= submit_hour_utc <= 23
    ):
        msg = f"submit_hour_utc must be an integer between 0 and 23: {submit_hour_utc}"
        raise InvalidConfigError(msg)
    moment = _as_utc(now)
    if moment.hour < submit_hour_utc:
        return False
    return last_submitted_date != utc_date_string(moment)


def compute_wait_with_jitter(
    base_ms: int,
    jitter_ms: int,
    random_fn: Callable[[], float] = random.random,
) -> int:
    """Return ``base_ms`` plus a uniform random offset in ``[0, jitter_ms)``."""
    if base_ms <= 0:
        msg = f"base_ms must be greater than zero: {base_ms}"
        raise InvalidConfigError(msg)
    if jitter_ms < 0:
        msg = f"jitter_ms must be zero or positive: {jitter_ms}"
        raise InvalidConfigError(msg)
    if jitter_ms == 0:
        return base_ms
    return base_ms + int(random_fn() * jitter_ms)


def _as_utc(moment: datetime) -> datetime:
    # Naive datetimes are taken to be UTC already.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)
