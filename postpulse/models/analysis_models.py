"""PostPulse — KPI Breakdown Output Models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel

from postpulse.aggregation.contribution import DeltaVector
from postpulse.core.metric_registry import TOTAL_COLUMNS
from postpulse.models.event_models import AnalyticsEvent


class PostType(str, Enum):
    """Content type of a post."""

    FEED = "feed"
    REEL = "reel"
    STORY = "story"


# ─────────────────────────────────────────────
# INPUTS — totals and per-post values
# ─────────────────────────────────────────────


class KPITotals(BaseModel):
    """Period totals summed from the same posts the breakdown segments use."""

    total_likes: float = 0
    total_comments: float = 0
    total_shares: float = 0
    total_reach: float = 0
    total_saves: float = 0
    total_follower_increase: float = 0
    total_interaction: float = 0
    total_external_link_taps: float = 0
    total_profile_visits: float = 0

    @classmethod
    def from_delta(cls, delta: DeltaVector) -> "KPITotals":
        return cls(
            **{
                column: getattr(delta, name)
                for name, column in TOTAL_COLUMNS.items()
                if column in cls.model_fields
            }
        )


class PostMetrics(BaseModel):
    """One post's latest metrics, the per-entity input of a breakdown."""

    post_id: str
    title: str = ""
    post_type: PostType = PostType.FEED
    likes: float = 0
    comments: float = 0
    shares: float = 0
    reach: float = 0
    saves: float = 0
    follower_increase: float = 0
    external_link_taps: float = 0
    profile_visits: float = 0
    interaction_count: float = 0  # reported count; 0 means derive it

    @property
    def interaction(self) -> float:
        if self.interaction_count:
            return self.interaction_count
        return self.likes + self.saves + self.comments + self.shares

    @classmethod
    def from_event(cls, event: AnalyticsEvent, delta: DeltaVector) -> "PostMetrics":
        """Post metadata from the event, values from its extracted contribution."""
        try:
            post_type = PostType((event.post_type or "feed").strip().lower())
        except ValueError:
            post_type = PostType.FEED
        return cls(
            post_id=event.record_id,
            title=event.title or "",
            post_type=post_type,
            likes=delta.likes,
            comments=delta.comments,
            shares=delta.shares,
            reach=delta.reach,
            saves=delta.saves,
            follower_increase=delta.follower_increase,
            external_link_taps=delta.external_link_taps,
            profile_visits=delta.profile_visits,
            interaction_count=delta.interaction,
        )


# ─────────────────────────────────────────────
# OUTPUTS
# ─────────────────────────────────────────────


class BreakdownSegment(BaseModel):
    """Named sub-total of a KPI."""

    label: str
    value: float


class TopPost(BaseModel):
    """A post ranked by its contribution to a KPI."""

    post_id: str
    title: str
    value: float
    post_type: PostType = PostType.FEED


class KPIBreakdown(BaseModel):
    """One KPI with its trend, segments and top contributors."""

    key: str
    label: str
    value: float
    unit: str = "count"
    change_pct: Optional[float] = None  # None: no comparable baseline
    segments: List[BreakdownSegment] = []
    top_posts: List[TopPost] = []
    insight: Optional[str] = None


class OwnerBreakdowns(BaseModel):
    """Breakdowns of one owner's reporting window."""

    owner_id: str
    period_key: str
    previous_key: str
    window_start: datetime
    window_end_exclusive: datetime
    breakdowns: List[KPIBreakdown] = []
