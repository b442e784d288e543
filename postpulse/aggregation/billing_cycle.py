"""PostPulse — Billing Cycle Window Resolver.

Turns "now" plus an owner's timezone and anchor day into absolute UTC
ranges for the current and previous reporting periods, and maps a
``YYYY-MM`` period key back to its window.

A period starts at local midnight on the anchor day of the month. Months
shorter than the anchor day start on their last day instead, so an owner
anchored on the 31st starts on Feb 28/29, Apr 30 and so on. Consecutive
windows always share a boundary: previous.end_exclusive == current.start.
"""

import calendar
import re
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel

from postpulse.config import settings
from postpulse.core.errors import ConsistencyViolation
from postpulse.core.logging import get_logger

logger = get_logger("aggregation.billing_cycle")

PERIOD_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")


# ── Output Models ──


class CycleRange(BaseModel):
    """One accounting period as an absolute instant range."""

    key: str
    start: datetime
    end_exclusive: datetime


class BillingCycleContext(BaseModel):
    """Current and previous periods around a given instant."""

    timezone: str
    anchor_day: int
    current: CycleRange
    previous: CycleRange

    @property
    def current_key(self) -> str:
        return self.current.key

    @property
    def current_start(self) -> datetime:
        return self.current.start

    @property
    def current_end_exclusive(self) -> datetime:
        return self.current.end_exclusive

    @property
    def previous_key(self) -> str:
        return self.previous.key

    @property
    def previous_start(self) -> datetime:
        return self.previous.start


class BillingWindow(BaseModel):
    """The window of one period key, plus its predecessor."""

    timezone: str
    anchor_day: int
    key: str
    start: datetime
    end_exclusive: datetime
    previous_key: str
    previous_start: datetime
    previous_end_exclusive: datetime


# ── Calendar Helpers ──


def normalize_timezone(name: Optional[str]) -> str:
    """Return ``name`` if it is a known IANA zone, else the default zone."""
    candidate = str(name or "").strip() or settings.default_timezone
    try:
        ZoneInfo(candidate)
        return candidate
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning(
            f"Unknown timezone {candidate!r}, using {settings.default_timezone}"
        )
        return settings.default_timezone


def clamp_anchor_day(anchor_day: int) -> int:
    return min(max(int(anchor_day), 1), 31)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def shift_month(year: int, month: int, diff: int) -> tuple[int, int]:
    """Move (year, month) by ``diff`` months."""
    index = year * 12 + (month - 1) + diff
    return index // 12, index % 12 + 1


def effective_anchor(anchor_day: int, year: int, month: int) -> int:
    """Anchor day clamped to the length of the given month."""
    return min(anchor_day, days_in_month(year, month))


def period_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def parse_period_key(value: str) -> Optional[tuple[int, int]]:
    """Parse ``YYYY-MM``; None when malformed or the month is out of range."""
    match = PERIOD_KEY_RE.match(str(value or "").strip())
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if month < 1 or month > 12 or year < 1:
        return None
    return year, month


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_midnight_to_utc(year: int, month: int, day: int, tz_name: str) -> datetime:
    """Absolute instant of local midnight, using the zone's offset on that date."""
    local = datetime(year, month, day, tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc)


def _check_window(key: str, start: datetime, end_exclusive: datetime) -> None:
    if end_exclusive <= start:
        raise ConsistencyViolation(
            f"Window {key} is empty or inverted: {start.isoformat()} → {end_exclusive.isoformat()}"
        )


def resolve_anchor_day(
    created_at: Optional[datetime],
    contract_start_date: Optional[datetime],
    tz_name: str,
) -> int:
    """Anchor day from account metadata: local day of creation, else contract start."""
    source = created_at or contract_start_date
    if source is None:
        return 1
    local = _as_utc(source).astimezone(ZoneInfo(normalize_timezone(tz_name)))
    return clamp_anchor_day(local.day)


# ── Public API ──


def current_and_previous_window(
    now: Optional[datetime],
    tz_name: Optional[str],
    anchor_day: int,
) -> BillingCycleContext:
    """Resolve the period containing ``now`` and the one before it."""
    now = _as_utc(now or datetime.now(timezone.utc))
    tz = normalize_timezone(tz_name)
    anchor = clamp_anchor_day(anchor_day)

    local_now = now.astimezone(ZoneInfo(tz))
    year, month = local_now.year, local_now.month
    if local_now.day < effective_anchor(anchor, year, month):
        year, month = shift_month(year, month, -1)

    window = _window(year, month, tz, anchor)
    if not (window.start <= now < window.end_exclusive):
        raise ConsistencyViolation(
            f"Window {window.key} does not contain {now.isoformat()}"
        )

    return BillingCycleContext(
        timezone=tz,
        anchor_day=anchor,
        current=CycleRange(
            key=window.key, start=window.start, end_exclusive=window.end_exclusive
        ),
        previous=CycleRange(
            key=window.previous_key,
            start=window.previous_start,
            end_exclusive=window.previous_end_exclusive,
        ),
    )


def window_for_key(
    key: str,
    tz_name: Optional[str],
    anchor_day: int,
    now: Optional[datetime] = None,
) -> BillingWindow:
    """Resolve the window of a ``YYYY-MM`` key.

    A malformed key resolves to the window containing ``now`` instead.
    """
    tz = normalize_timezone(tz_name)
    anchor = clamp_anchor_day(anchor_day)
    parsed = parse_period_key(key)
    if parsed is None:
        logger.warning(f"Malformed period key {key!r}, using the current window")
        context = current_and_previous_window(now, tz, anchor)
        parsed = parse_period_key(context.current_key)
    return _window(parsed[0], parsed[1], tz, anchor)


def _window(year: int, month: int, tz: str, anchor: int) -> BillingWindow:
    next_year, next_month = shift_month(year, month, 1)
    prev_year, prev_month = shift_month(year, month, -1)

    start = local_midnight_to_utc(year, month, effective_anchor(anchor, year, month), tz)
    end_exclusive = local_midnight_to_utc(
        next_year, next_month, effective_anchor(anchor, next_year, next_month), tz
    )
    previous_start = local_midnight_to_utc(
        prev_year, prev_month, effective_anchor(anchor, prev_year, prev_month), tz
    )

    key = period_key(year, month)
    _check_window(key, start, end_exclusive)
    _check_window(period_key(prev_year, prev_month), previous_start, start)

    return BillingWindow(
        timezone=tz,
        anchor_day=anchor,
        key=key,
        start=start,
        end_exclusive=end_exclusive,
        previous_key=period_key(prev_year, prev_month),
        previous_start=previous_start,
        previous_end_exclusive=start,
    )
