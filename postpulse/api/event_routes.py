"""PostPulse — Analytics Event Routes.

Every mutation of the raw event store is folded into the monthly summaries
in the same transaction, so a failed summary update also rolls back the
event write and the client can retry the request as-is.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from postpulse.aggregation.live_updater import apply_event_change
from postpulse.core.errors import ConsistencyViolation, TransientIOError
from postpulse.core.logging import get_logger
from postpulse.database import get_session
from postpulse.models.event_models import AnalyticsEvent
from postpulse.models.summary_models import MonthlySummary

logger = get_logger("api.events")

router = APIRouter(prefix="/events", tags=["Events"])


# ── Request / Response Models ──


class EventPayload(BaseModel):
    """Body for creating or editing an analytics event."""

    record_id: Optional[str] = None
    owner_id: Optional[str] = None
    sns_kind: Optional[str] = None
    published_at: Optional[str] = None
    """ISO-8601 publish time, e.g. "2024-03-05T09:00:00Z"."""
    post_type: Optional[str] = None
    title: Optional[str] = None
    likes: Optional[float] = None
    comments: Optional[float] = None
    shares: Optional[float] = None
    reach: Optional[float] = None
    saves: Optional[float] = None
    follower_increase: Optional[float] = None
    interaction_count: Optional[float] = None
    external_link_taps: Optional[float] = None
    profile_visits: Optional[float] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "owner_id": "u1",
                    "sns_kind": "instagram",
                    "published_at": "2024-03-05T09:00:00Z",
                    "post_type": "reel",
                    "likes": 10,
                    "comments": 2,
                }
            ]
        }
    }


class EventChangeResponse(BaseModel):
    """Result of an event mutation."""

    status: str = "success"
    record_id: str
    summaries: List[str] = []


# ── Helpers ──


def _apply(session: Session, event: AnalyticsEvent, payload: EventPayload) -> None:
    for field, value in payload.model_dump(exclude_unset=True, exclude={"record_id"}).items():
        if field in ("owner_id", "title"):
            value = (value or "").strip()
        elif field == "post_type":
            value = value or "feed"
        setattr(event, field, value)
    event.updated_at = datetime.now(timezone.utc)


def _fold(
    session: Session,
    record_id: str,
    before: Optional[dict],
    after: Optional[dict],
) -> List[MonthlySummary]:
    try:
        written = apply_event_change(session, record_id, before, after)
        # Skipped events still need the event write itself committed
        session.commit()
        return written
    except TransientIOError as e:
        raise HTTPException(status_code=503, detail=f"Summary store unavailable: {e}")
    except ConsistencyViolation as e:
        logger.error(f"Consistency violation on event {record_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Consistency violation: {e}")


# ── Endpoints ──


@router.post("", response_model=EventChangeResponse, status_code=201)
async def create_event(payload: EventPayload, session: Session = Depends(get_session)):
    """Store a new analytics event and add it to its monthly summary."""
    record_id = payload.record_id or uuid.uuid4().hex
    if session.get(AnalyticsEvent, record_id) is not None:
        raise HTTPException(status_code=409, detail=f"Event {record_id} already exists")

    event = AnalyticsEvent(record_id=record_id)
    _apply(session, event, payload)
    session.add(event)
    session.flush()

    written = _fold(session, record_id, None, event.to_raw())
    return EventChangeResponse(record_id=record_id, summaries=[s.summary_id for s in written])


@router.put("/{record_id}", response_model=EventChangeResponse)
async def update_event(
    record_id: str, payload: EventPayload, session: Session = Depends(get_session)
):
    """Edit an event and move its contribution between summaries."""
    event = session.get(AnalyticsEvent, record_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Event {record_id} not found")

    before = event.to_raw()
    _apply(session, event, payload)
    session.add(event)
    session.flush()

    written = _fold(session, record_id, before, event.to_raw())
    return EventChangeResponse(record_id=record_id, summaries=[s.summary_id for s in written])


@router.delete("/{record_id}", response_model=EventChangeResponse)
async def delete_event(record_id: str, session: Session = Depends(get_session)):
    """Delete an event and subtract it from its summary (the summary is kept)."""
    event = session.get(AnalyticsEvent, record_id)
    if event is None:
        raise HTTPException(status_code=404, detail=f"Event {record_id} not found")

    before = event.to_raw()
    session.delete(event)
    session.flush()

    written = _fold(session, record_id, before, None)
    return EventChangeResponse(record_id=record_id, summaries=[s.summary_id for s in written])
