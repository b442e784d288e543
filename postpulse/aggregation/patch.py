"""PostPulse — Summary Patch Accumulator.

A ``SummaryPatch`` is the in-memory running sum of every contribution merged
for one (owner, period). Sums are elementwise additions, so merge order
never matters and merging ``negate(c)`` exactly undoes merging ``c``.

The reference record (the most recently published event of the period) is
not derived from merge order. Both the live updater and the backfill pick
it with ``is_newer_reference`` so the two paths agree.
"""

import json
from datetime import datetime
from typing import Dict, List, Optional

from postpulse.aggregation.contribution import (
    Contribution,
    DailyVector,
    DeltaVector,
    to_number,
)
from postpulse.core.errors import ConsistencyViolation
from postpulse.core.metric_registry import TOTAL_COLUMNS
from postpulse.models.summary_models import MonthlySummary


def is_newer_reference(
    current_at: Optional[datetime],
    current_id: Optional[str],
    candidate_at: datetime,
    candidate_id: str,
) -> bool:
    """True when the candidate event should become the reference record.

    Later publish time wins; equal times fall back to the larger record id.
    A missing current reference always loses.
    """
    if current_at is None:
        return True
    if candidate_at > current_at:
        return True
    if candidate_at < current_at:
        return False
    return candidate_id > (current_id or "")


class SummaryPatch:
    """Mutable running totals for one owner and period."""

    def __init__(
        self,
        owner_id: str,
        period_key: str,
        reference_record_id: Optional[str] = None,
        delta: Optional[DeltaVector] = None,
        daily_by_date: Optional[Dict[str, DailyVector]] = None,
    ):
        self.owner_id = owner_id
        self.period_key = period_key
        self.reference_record_id = reference_record_id
        self.delta = delta or DeltaVector()
        self.daily_by_date: Dict[str, DailyVector] = dict(daily_by_date or {})

    def __repr__(self) -> str:
        return f"<SummaryPatch {self.owner_id} {self.period_key} posts={self.delta.post_count}>"

    # ── Construction ──

    @classmethod
    def new(
        cls, owner_id: str, period_key: str, reference_record_id: Optional[str] = None
    ) -> "SummaryPatch":
        return cls(owner_id, period_key, reference_record_id)

    @classmethod
    def from_summary(cls, row: MonthlySummary) -> "SummaryPatch":
        """Rebuild the running state from a persisted summary row."""
        delta = DeltaVector(
            **{
                name: to_number(getattr(row, column))
                for name, column in TOTAL_COLUMNS.items()
            }
        )
        daily_by_date = {}
        for entry in json.loads(row.daily_breakdown_json or "[]"):
            daily_by_date[entry["date"]] = DailyVector(
                likes=to_number(entry.get("likes")),
                reach=to_number(entry.get("reach")),
                saves=to_number(entry.get("saves")),
                comments=to_number(entry.get("comments")),
                engagement=to_number(entry.get("engagement")),
            )
        return cls(
            row.owner_id,
            row.period_key,
            row.reference_record_id,
            delta=delta,
            daily_by_date=daily_by_date,
        )

    # ── Accumulation ──

    def merge(self, contribution: Contribution) -> None:
        """Add a contribution's deltas into the running totals."""
        if (
            contribution.owner_id != self.owner_id
            or contribution.period_key != self.period_key
        ):
            raise ConsistencyViolation(
                f"Contribution for {contribution.owner_id}/{contribution.period_key} "
                f"merged into patch {self.owner_id}/{self.period_key}"
            )
        self.delta = self.delta.plus(contribution.delta)
        existing = self.daily_by_date.get(contribution.day_key, DailyVector())
        self.daily_by_date[contribution.day_key] = existing.plus(contribution.daily)

    # ── Externalized Form ──

    def daily_breakdown(self) -> List[dict]:
        """Non-zero days, ascending by date."""
        return [
            {"date": day, **values.as_dict()}
            for day, values in sorted(self.daily_by_date.items())
            if not values.is_zero()
        ]

    def summary_fields(self) -> dict:
        """Column values this engine owns on a ``MonthlySummary`` row."""
        totals = {
            column: getattr(self.delta, name) for name, column in TOTAL_COLUMNS.items()
        }
        return {
            "owner_id": self.owner_id,
            "period_key": self.period_key,
            **totals,
            "daily_breakdown_json": json.dumps(self.daily_breakdown()),
            "reference_record_id": self.reference_record_id,
        }
