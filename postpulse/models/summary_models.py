"""PostPulse — Monthly KPI Summary Models."""

import json
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel
from sqlmodel import SQLModel, Field, UniqueConstraint


# ─────────────────────────────────────────────
# DATABASE MODEL — one row per (owner, month)
# ─────────────────────────────────────────────


def summary_doc_id(owner_id: str, period_key: str) -> str:
    """Document id of the summary for an owner and period."""
    return f"{owner_id}_{period_key}"


class MonthlySummary(SQLModel, table=True):
    """Running KPI totals for one owner and one calendar month.

    Totals are raw running sums and may go transiently negative while
    edit/delete compensation is in flight. Never clamp them here; use
    ``SummaryView`` at the read boundary.
    """

    __tablename__ = "monthly_kpi_summaries"
    __table_args__ = (
        UniqueConstraint("owner_id", "period_key", name="uq_monthly_summary"),
    )

    summary_id: str = Field(primary_key=True, description="{owner_id}_{period_key}")
    owner_id: str = Field(index=True)
    period_key: str = Field(index=True, description="YYYY-MM")
    sns_kind: str = Field(default="instagram")

    total_likes: float = 0
    total_comments: float = 0
    total_shares: float = 0
    total_reach: float = 0
    total_saves: float = 0
    total_follower_increase: float = 0
    total_interaction: float = 0
    total_external_link_taps: float = 0
    total_profile_visits: float = 0
    post_count: int = 0

    daily_breakdown_json: str = Field(default="[]", description="DailyBreakdownEntry list")
    reference_record_id: Optional[str] = Field(
        default=None, description="Most recently published event in the period"
    )
    schema_version: str = Field(default="1.0.0")

    # Not written by summary upserts; survives backfill overwrites
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def daily_breakdown(self) -> List["DailyBreakdownEntry"]:
        return [DailyBreakdownEntry(**d) for d in json.loads(self.daily_breakdown_json or "[]")]


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS — summary read surface
# ─────────────────────────────────────────────


class DailyBreakdownEntry(BaseModel):
    """Day-level metrics inside a monthly summary."""

    date: str
    likes: float = 0
    reach: float = 0
    saves: float = 0
    comments: float = 0
    engagement: float = 0


def _floor(value: float) -> float:
    return max(0, value)


class SummaryView(BaseModel):
    """Owner-facing counters with the non-negative display floor applied."""

    owner_id: str
    period_key: str
    total_likes: float = 0
    total_comments: float = 0
    total_shares: float = 0
    total_reach: float = 0
    total_saves: float = 0
    total_follower_increase: float = 0
    total_interaction: float = 0
    total_external_link_taps: float = 0
    total_profile_visits: float = 0
    post_count: int = 0
    daily_breakdown: List[DailyBreakdownEntry] = []
    reference_record_id: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_summary(cls, row: MonthlySummary) -> "SummaryView":
        return cls(
            owner_id=row.owner_id,
            period_key=row.period_key,
            total_likes=_floor(row.total_likes),
            total_comments=_floor(row.total_comments),
            total_shares=_floor(row.total_shares),
            total_reach=_floor(row.total_reach),
            total_saves=_floor(row.total_saves),
            total_follower_increase=_floor(row.total_follower_increase),
            total_interaction=_floor(row.total_interaction),
            total_external_link_taps=_floor(row.total_external_link_taps),
            total_profile_visits=_floor(row.total_profile_visits),
            post_count=int(_floor(row.post_count)),
            daily_breakdown=[
                DailyBreakdownEntry(
                    date=d.date,
                    likes=_floor(d.likes),
                    reach=_floor(d.reach),
                    saves=_floor(d.saves),
                    comments=_floor(d.comments),
                    engagement=_floor(d.engagement),
                )
                for d in row.daily_breakdown()
            ],
            reference_record_id=row.reference_record_id,
            updated_at=row.updated_at.isoformat() if row.updated_at else None,
        )
