"""PostPulse — Raw Analytics Event & Owner Account Models.

Events are owned by the posting API: this service only reacts to their
create/edit/delete transitions. ``published_at`` is kept exactly as it
arrived; the contribution extractor decides whether it is usable.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from sqlmodel import SQLModel, Field


class AnalyticsEvent(SQLModel, table=True):
    """One published post and its latest reported metrics."""

    __tablename__ = "analytics_events"

    record_id: str = Field(primary_key=True, description="Event document id")
    owner_id: str = Field(default="", index=True, description="Owning account")
    sns_kind: Optional[str] = Field(default=None, description="instagram")
    published_at: Optional[str] = Field(
        default=None, description="Publish time as received (ISO-8601)"
    )
    post_type: str = Field(default="feed", description="feed | reel | story")
    title: str = Field(default="", description="Post caption headline")

    likes: Optional[float] = None
    comments: Optional[float] = None
    shares: Optional[float] = None
    reach: Optional[float] = None
    saves: Optional[float] = None
    follower_increase: Optional[float] = None
    interaction_count: Optional[float] = None
    external_link_taps: Optional[float] = None
    profile_visits: Optional[float] = None

    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_raw(self) -> Dict[str, Any]:
        """Return the raw mapping shape the contribution extractor consumes."""
        return {
            "recordId": self.record_id,
            "ownerId": self.owner_id,
            "snsKind": self.sns_kind,
            "publishedAt": self.published_at,
            "likes": self.likes,
            "comments": self.comments,
            "shares": self.shares,
            "reach": self.reach,
            "saves": self.saves,
            "followerIncrease": self.follower_increase,
            "interactionCount": self.interaction_count,
            "externalLinkTaps": self.external_link_taps,
            "profileVisits": self.profile_visits,
        }


class OwnerAccount(SQLModel, table=True):
    """Account metadata used to anchor billing windows."""

    __tablename__ = "owner_accounts"

    owner_id: str = Field(primary_key=True)
    timezone: str = Field(default="", description="IANA zone name")
    created_at: Optional[datetime] = Field(default=None)
    contract_start_date: Optional[datetime] = Field(default=None)
