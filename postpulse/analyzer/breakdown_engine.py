"""PostPulse — KPI Breakdown Engine.

Read-only transform from the posts published in an owner's billing window
into the ranked breakdown cards shown on the dashboard. Card totals are
summed from the same posts that feed the segments and top lists:
value, % change vs previous period, content-type segments, top 3 posts and
a one-line insight when a single segment dominates.
"""

from collections import defaultdict
from datetime import datetime
from typing import Callable, List, Optional

from sqlmodel import Session

from postpulse.aggregation.billing_cycle import (
    current_and_previous_window,
    resolve_anchor_day,
    window_for_key,
)
from postpulse.aggregation.contribution import DeltaVector, extract_contribution
from postpulse.aggregation.store import scan_events
from postpulse.models.analysis_models import (
    BreakdownSegment,
    KPIBreakdown,
    KPITotals,
    OwnerBreakdowns,
    PostMetrics,
    PostType,
    TopPost,
)
from postpulse.models.event_models import OwnerAccount
from postpulse.core.logging import get_logger

logger = get_logger("analyzer.breakdown")

TOP_POSTS_LIMIT = 3
DOMINANT_SHARE_PCT = 50.0

TYPE_LABELS = {
    PostType.FEED: "Feed",
    PostType.REEL: "Reels",
    PostType.STORY: "Stories",
}

FEED_AND_REEL = {PostType.FEED, PostType.REEL}


class BreakdownDefinition:
    """Which total and which per-post value make up one breakdown card."""

    def __init__(
        self,
        key: str,
        label: str,
        total_field: str,
        post_value: Callable[[PostMetrics], float],
        post_types: Optional[set] = None,
    ):
        self.key = key
        self.label = label
        self.total_field = total_field
        self.post_value = post_value
        self.post_types = post_types

    def eligible(self, posts: List[PostMetrics]) -> List[PostMetrics]:
        if self.post_types is None:
            return list(posts)
        return [p for p in posts if p.post_type in self.post_types]


BREAKDOWNS: List[BreakdownDefinition] = [
    BreakdownDefinition("reach", "Reach", "total_reach", lambda p: p.reach),
    BreakdownDefinition("saves", "Saves", "total_saves", lambda p: p.saves),
    BreakdownDefinition(
        "likes", "Feed & reel likes", "total_likes", lambda p: p.likes, FEED_AND_REEL
    ),
    BreakdownDefinition(
        "shares", "Feed & reel shares", "total_shares", lambda p: p.shares, FEED_AND_REEL
    ),
    BreakdownDefinition(
        "total_interaction",
        "Total interactions",
        "total_interaction",
        lambda p: p.interaction,
    ),
    BreakdownDefinition(
        "external_links",
        "External link taps",
        "total_external_link_taps",
        lambda p: p.external_link_taps,
        {PostType.FEED},
    ),
    BreakdownDefinition(
        "profile_visits",
        "Profile visits",
        "total_profile_visits",
        lambda p: p.profile_visits,
    ),
    BreakdownDefinition(
        "follower_increase",
        "Follower increase",
        "total_follower_increase",
        lambda p: p.follower_increase,
    ),
]


def change_pct(current: float, previous: float) -> Optional[float]:
    """% change vs previous; None when there is no baseline to compare with."""
    if previous == 0:
        return None
    return round((current - previous) / abs(previous) * 100, 2)


def _segments(
    posts: List[PostMetrics], value_of: Callable[[PostMetrics], float]
) -> List[BreakdownSegment]:
    by_type: dict[PostType, float] = defaultdict(float)
    for post in posts:
        by_type[post.post_type] += value_of(post)
    segments = [
        BreakdownSegment(label=TYPE_LABELS[post_type], value=value)
        for post_type, value in by_type.items()
        if value > 0
    ]
    return sorted(segments, key=lambda s: s.value, reverse=True)


def _top_posts(
    posts: List[PostMetrics], value_of: Callable[[PostMetrics], float]
) -> List[TopPost]:
    ranked = sorted(
        (
            TopPost(
                post_id=p.post_id,
                title=p.title or "Untitled post",
                value=value_of(p),
                post_type=p.post_type,
            )
            for p in posts
        ),
        key=lambda t: (-t.value, t.post_id),
    )
    return [t for t in ranked if t.value > 0][:TOP_POSTS_LIMIT]


def _insight(segments: List[BreakdownSegment], total: float) -> Optional[str]:
    if not segments or total == 0:
        return None
    top = segments[0]
    share = top.value / total * 100
    if share >= DOMINANT_SHARE_PCT:
        return f"{top.label} accounts for {share:.1f}% of the total."
    return None


def build_breakdowns(
    totals: KPITotals,
    previous_totals: KPITotals,
    posts: List[PostMetrics],
) -> List[KPIBreakdown]:
    """Compose every dashboard breakdown card."""
    breakdowns: List[KPIBreakdown] = []
    for definition in BREAKDOWNS:
        value = getattr(totals, definition.total_field)
        previous = getattr(previous_totals, definition.total_field)
        eligible = definition.eligible(posts)
        segments = _segments(eligible, definition.post_value)
        breakdowns.append(
            KPIBreakdown(
                key=definition.key,
                label=definition.label,
                value=value,
                change_pct=change_pct(value, previous),
                segments=segments,
                top_posts=_top_posts(eligible, definition.post_value),
                insight=_insight(segments, value),
            )
        )
    return breakdowns


def compose_owner_breakdowns(
    session: Session,
    owner_id: str,
    period: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OwnerBreakdowns:
    """Resolve an owner's window, sum its posts, then build the breakdowns."""
    account = session.get(OwnerAccount, owner_id)
    tz_name = account.timezone if account else None
    anchor_day = (
        resolve_anchor_day(account.created_at, account.contract_start_date, tz_name)
        if account
        else 1
    )

    if period:
        window = window_for_key(period, tz_name, anchor_day, now=now)
    else:
        context = current_and_previous_window(now, tz_name, anchor_day)
        window = window_for_key(context.current_key, context.timezone, anchor_day)

    current_delta = DeltaVector()
    previous_delta = DeltaVector()
    posts: List[PostMetrics] = []
    for event in scan_events(session, owner_id):
        contribution = extract_contribution(event.to_raw())
        if contribution is None or contribution.owner_id != owner_id:
            continue
        published_at = contribution.published_at
        # Totals, segments and top posts all come from the same window
        if window.start <= published_at < window.end_exclusive:
            current_delta = current_delta.plus(contribution.delta)
            posts.append(PostMetrics.from_event(event, contribution.delta))
        elif window.previous_start <= published_at < window.previous_end_exclusive:
            previous_delta = previous_delta.plus(contribution.delta)

    breakdowns = build_breakdowns(
        KPITotals.from_delta(current_delta),
        KPITotals.from_delta(previous_delta),
        posts,
    )
    logger.info(
        f"Built {len(breakdowns)} breakdowns from {len(posts)} posts",
        extra={"owner_id": owner_id, "period_key": window.key},
    )
    return OwnerBreakdowns(
        owner_id=owner_id,
        period_key=window.key,
        previous_key=window.previous_key,
        window_start=window.start,
        window_end_exclusive=window.end_exclusive,
        breakdowns=breakdowns,
    )
