"""PostPulse — Live Incremental Summary Updater.

Applied on every create/edit/delete of an analytics event. Each change is
turned into compensating contributions:

  create → +new
  edit   → -old, +new   (into two summaries when the month or owner moved)
  delete → -old

All summaries touched by one change are locked, merged and committed in a
single transaction. Store failures roll everything back and surface as
``TransientIOError``; retrying re-reads the summaries, so it is safe.
"""

import time
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from postpulse.aggregation.contribution import (
    Contribution,
    extract_contribution,
    negate,
    to_instant,
)
from postpulse.aggregation.patch import SummaryPatch, is_newer_reference
from postpulse.aggregation.store import load_summary, resolve_reference, write_summary
from postpulse.core.errors import ConsistencyViolation, TransientIOError
from postpulse.core.logging import get_logger
from postpulse.models.event_models import AnalyticsEvent
from postpulse.models.summary_models import MonthlySummary

logger = get_logger("aggregation.live")

RawEvent = Mapping[str, Any]
SummaryKey = Tuple[str, str]


def _stored_reference_wins(
    session: Session, row: Optional[MonthlySummary], candidate: Contribution
) -> bool:
    """Whether the current reference stays ahead of a newly created event."""
    if row is None or not row.reference_record_id:
        return False
    reference = session.get(AnalyticsEvent, row.reference_record_id)
    reference_at = to_instant(reference.published_at) if reference else None
    return not is_newer_reference(
        reference_at, row.reference_record_id, candidate.published_at, candidate.record_id
    )


def _plan(
    old: Optional[Contribution], new: Optional[Contribution]
) -> Dict[SummaryKey, List[Contribution]]:
    planned: Dict[SummaryKey, List[Contribution]] = defaultdict(list)
    if old is not None:
        planned[(old.owner_id, old.period_key)].append(negate(old))
    if new is not None:
        planned[(new.owner_id, new.period_key)].append(new)
    return planned


def apply_event_change(
    session: Session,
    record_id: str,
    before: Optional[RawEvent],
    after: Optional[RawEvent],
) -> List[MonthlySummary]:
    """Fold one event transition into the persisted monthly summaries.

    ``before``/``after`` are the raw event snapshots around the change (None
    for create/delete). The event store must already reflect ``after`` in
    this session: edits and deletes rescan it to re-resolve the reference.
    Returns the summaries written, empty when both snapshots were skipped.
    """
    old = extract_contribution({**before, "recordId": record_id}) if before else None
    new = extract_contribution({**after, "recordId": record_id}) if after else None
    if old is None and new is None:
        logger.info(
            f"Event {record_id} has no valid contribution, skipping",
            extra={"record_id": record_id},
        )
        return []

    # Only a pure create can trust the stored reference pointer
    rescan = before is not None
    planned = _plan(old, new)
    started = time.monotonic()
    written: List[MonthlySummary] = []

    try:
        # Fixed lock order so concurrent edits spanning two months cannot deadlock
        for owner_id, period_key in sorted(planned):
            row = load_summary(session, owner_id, period_key, for_update=True)
            patch = (
                SummaryPatch.from_summary(row)
                if row is not None
                else SummaryPatch.new(owner_id, period_key)
            )
            for contribution in planned[(owner_id, period_key)]:
                patch.merge(contribution)

            if rescan:
                patch.reference_record_id = resolve_reference(
                    session, owner_id, period_key
                )
            elif not _stored_reference_wins(session, row, new):
                patch.reference_record_id = new.record_id

            written.append(write_summary(session, row, patch))
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(
            f"Summary update for event {record_id} failed: {e}",
            extra={"record_id": record_id},
        )
        raise TransientIOError(
            f"Summary update for event {record_id} failed: {e}", operation="live_update"
        ) from e
    except ConsistencyViolation:
        session.rollback()
        raise

    for row in written:
        session.refresh(row)
        logger.info(
            f"Summary {row.summary_id} updated by event {record_id}",
            extra={
                "record_id": record_id,
                "owner_id": row.owner_id,
                "period_key": row.period_key,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
    return written


def on_event_created(session: Session, record_id: str, after: RawEvent) -> List[MonthlySummary]:
    return apply_event_change(session, record_id, None, after)


def on_event_updated(
    session: Session, record_id: str, before: RawEvent, after: RawEvent
) -> List[MonthlySummary]:
    return apply_event_change(session, record_id, before, after)


def on_event_deleted(session: Session, record_id: str, before: RawEvent) -> List[MonthlySummary]:
    return apply_event_change(session, record_id, before, None)
