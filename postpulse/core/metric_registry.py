"""PostPulse — Unified Metric Registry.

Defines the canonical set of per-post metrics, where each one is read from
on a raw analytics event and where its running total is persisted on a
monthly summary. The contribution extractor, the patch accumulator and the
backfill writer all walk these tables, so adding a metric here is the only
change needed to carry it through both the live and the backfill path.
"""

from enum import Enum
from typing import Dict


class MetricType(str, Enum):
    """How a metric is categorised."""

    VOLUME = "volume"  # Raw counts: reach, profile visits
    ENGAGEMENT = "engagement"  # Likes, comments, shares, saves
    GROWTH = "growth"  # Follower increase (may be negative)
    DERIVED = "derived"  # Computed by the extractor: interaction, post_count


class MetricDefinition:
    """Describes a single summary metric."""

    def __init__(
        self,
        name: str,
        metric_type: MetricType,
        raw_key: str = "",
        total_column: str = "",
        description: str = "",
    ):
        self.name = name
        self.metric_type = metric_type
        self.raw_key = raw_key
        self.total_column = total_column
        self.description = description

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.metric_type.value})>"


# ─────────────────────────────────────────────
# DELTA METRICS — monthly running totals
# ─────────────────────────────────────────────

DELTA_METRICS: Dict[str, MetricDefinition] = {
    "likes": MetricDefinition(
        "likes", MetricType.ENGAGEMENT, "likes", "total_likes", "Likes"
    ),
    "comments": MetricDefinition(
        "comments", MetricType.ENGAGEMENT, "comments", "total_comments", "Comments"
    ),
    "shares": MetricDefinition(
        "shares", MetricType.ENGAGEMENT, "shares", "total_shares", "Shares"
    ),
    "reach": MetricDefinition(
        "reach", MetricType.VOLUME, "reach", "total_reach", "Unique accounts reached"
    ),
    "saves": MetricDefinition(
        "saves", MetricType.ENGAGEMENT, "saves", "total_saves", "Saves"
    ),
    "follower_increase": MetricDefinition(
        "follower_increase",
        MetricType.GROWTH,
        "followerIncrease",
        "total_follower_increase",
        "Followers gained from the post",
    ),
    "interaction": MetricDefinition(
        "interaction",
        MetricType.DERIVED,
        "interactionCount",
        "total_interaction",
        "Explicit interaction count, else likes+comments+shares+saves",
    ),
    "external_link_taps": MetricDefinition(
        "external_link_taps",
        MetricType.VOLUME,
        "externalLinkTaps",
        "total_external_link_taps",
        "Taps on external links",
    ),
    "profile_visits": MetricDefinition(
        "profile_visits",
        MetricType.VOLUME,
        "profileVisits",
        "total_profile_visits",
        "Profile visits driven by the post",
    ),
    "post_count": MetricDefinition(
        "post_count", MetricType.DERIVED, "", "post_count", "Posts counted (±1 per event)"
    ),
}


# Summary column of each delta metric
TOTAL_COLUMNS = {name: m.total_column for name, m in DELTA_METRICS.items()}
