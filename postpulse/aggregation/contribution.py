"""PostPulse — Contribution Extractor.

Validates one raw analytics event and normalizes it into an immutable
``Contribution``: the exact amount the event adds to its owner's monthly
totals and to the day-level breakdown.

Events are attributed to the UTC calendar month and day of their publish
time. That keeps a post's contribution stable even if the owner later
changes their timezone; reporting windows (see ``billing_cycle``) are a
separate concern.
"""

import math
from dataclasses import dataclass, fields, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

from postpulse.config import settings
from postpulse.core.metric_registry import DELTA_METRICS

Number = Union[int, float]

# Fractional metrics are kept to this many decimal places
DECIMAL_PLACES = 6


# ─────────────────────────────────────────────
# NUMERIC VECTORS
# ─────────────────────────────────────────────


def _normalize(value: Number) -> Number:
    """Snap to the fixed grid so float sums do not depend on merge order."""
    if isinstance(value, int):
        return value
    value = round(value, DECIMAL_PLACES)
    return int(value) if value.is_integer() else value


def _add(a, b):
    return type(a)(
        *(_normalize(getattr(a, f.name) + getattr(b, f.name)) for f in fields(a))
    )


def _neg(a):
    return type(a)(*(-getattr(a, f.name) for f in fields(a)))


@dataclass(frozen=True)
class DeltaVector:
    """Monthly total deltas. Field order follows the metric registry."""

    likes: Number = 0
    comments: Number = 0
    shares: Number = 0
    reach: Number = 0
    saves: Number = 0
    follower_increase: Number = 0
    interaction: Number = 0
    external_link_taps: Number = 0
    profile_visits: Number = 0
    post_count: int = 0

    def plus(self, other: "DeltaVector") -> "DeltaVector":
        return _add(self, other)

    def negated(self) -> "DeltaVector":
        return _neg(self)

    def as_dict(self) -> dict[str, Number]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class DailyVector:
    """Day-level breakdown deltas."""

    likes: Number = 0
    reach: Number = 0
    saves: Number = 0
    comments: Number = 0
    engagement: Number = 0

    def plus(self, other: "DailyVector") -> "DailyVector":
        return _add(self, other)

    def negated(self) -> "DailyVector":
        return _neg(self)

    def is_zero(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def as_dict(self) -> dict[str, Number]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class Contribution:
    """The normalized effect of one raw event on the aggregates."""

    owner_id: str
    period_key: str
    day_key: str
    delta: DeltaVector
    daily: DailyVector
    # Source event, used only for reference-record tie-breaks
    record_id: str = ""
    published_at: Optional[datetime] = None


def negate(contribution: Contribution) -> Contribution:
    """Sign-flip every numeric field; keys and source stay the same."""
    return replace(
        contribution,
        delta=contribution.delta.negated(),
        daily=contribution.daily.negated(),
    )


# ─────────────────────────────────────────────
# INPUT COERCION
# ─────────────────────────────────────────────


def to_number(value: Any) -> Number:
    """Parse or zero.

    Integral values come back as int so sums stay exact. Fractional values
    are rounded to ``DECIMAL_PLACES``; with every partial sum snapped to the
    same grid, totals are identical in any merge order.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return _normalize(number)


class TimestampShape(str, Enum):
    """Accepted shapes of ``publishedAt``."""

    NATIVE = "native"  # datetime / date
    WRAPPED = "wrapped"  # object with a conversion method
    TEXT = "text"  # ISO-8601 string


# Conversion methods of wrapped timestamps: our own wrappers, protobuf
# Timestamp, pandas Timestamp
WRAPPED_CONVERTERS = ("to_datetime", "ToDatetime", "to_pydatetime")


def classify_timestamp(value: Any) -> Optional[TimestampShape]:
    if isinstance(value, (datetime, date)):
        return TimestampShape.NATIVE
    if isinstance(value, str):
        return TimestampShape.TEXT
    if value is not None and any(
        callable(getattr(value, name, None)) for name in WRAPPED_CONVERTERS
    ):
        return TimestampShape.WRAPPED
    return None


def _parse_text(value: str) -> Optional[datetime]:
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _unwrap(value: Any) -> Optional[datetime]:
    for name in WRAPPED_CONVERTERS:
        converter = getattr(value, name, None)
        if callable(converter):
            try:
                converted = converter()
            except (TypeError, ValueError, OverflowError):
                return None
            return converted if isinstance(converted, datetime) else None
    return None


def to_instant(value: Any) -> Optional[datetime]:
    """Normalize any accepted ``publishedAt`` shape to an aware UTC datetime."""
    shape = classify_timestamp(value)
    if shape is TimestampShape.NATIVE:
        instant = value if isinstance(value, datetime) else datetime(value.year, value.month, value.day)
    elif shape is TimestampShape.WRAPPED:
        instant = _unwrap(value)
    elif shape is TimestampShape.TEXT:
        instant = _parse_text(value)
    else:
        return None

    if instant is None:
        return None
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def month_key(instant: datetime) -> str:
    return f"{instant.year:04d}-{instant.month:02d}"


def day_key(instant: datetime) -> str:
    return f"{instant.year:04d}-{instant.month:02d}-{instant.day:02d}"


# ─────────────────────────────────────────────
# EXTRACTION
# ─────────────────────────────────────────────


def _owner_id(raw: Mapping[str, Any]) -> str:
    value = raw.get("ownerId", raw.get("userId"))
    return value.strip() if isinstance(value, str) else ""


def _sns_kind_supported(raw: Mapping[str, Any]) -> bool:
    value = raw.get("snsKind", raw.get("snsType"))
    if not isinstance(value, str):
        return True
    kind = value.strip().lower()
    return not kind or kind == settings.supported_sns_kind


def extract_contribution(raw: Optional[Mapping[str, Any]]) -> Optional[Contribution]:
    """Build the contribution of one raw event, or None if it must be skipped."""
    if not raw:
        return None

    owner_id = _owner_id(raw)
    if not owner_id:
        return None
    if not _sns_kind_supported(raw):
        return None

    published_at = to_instant(raw.get("publishedAt"))
    if published_at is None:
        return None

    values = {
        name: to_number(raw.get(metric.raw_key))
        for name, metric in DELTA_METRICS.items()
        if metric.raw_key
    }
    values["interaction"] = values["interaction"] or _normalize(
        values["likes"] + values["comments"] + values["shares"] + values["saves"]
    )

    delta = DeltaVector(post_count=1, **values)
    daily = DailyVector(
        likes=delta.likes,
        reach=delta.reach,
        saves=delta.saves,
        comments=delta.comments,
        engagement=delta.interaction,
    )

    record_id = raw.get("recordId")
    return Contribution(
        owner_id=owner_id,
        period_key=month_key(published_at),
        day_key=day_key(published_at),
        delta=delta,
        daily=daily,
        record_id=str(record_id) if record_id is not None else "",
        published_at=published_at,
    )
