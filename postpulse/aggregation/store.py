"""PostPulse — Summary & Event Store Access.

Thin helpers over the SQLModel session shared by the live updater and the
backfill, so both read and write summaries the same way.
"""

from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlmodel import Session, select

from postpulse.aggregation.contribution import extract_contribution
from postpulse.aggregation.patch import SummaryPatch, is_newer_reference
from postpulse.config import settings
from postpulse.core.errors import ConsistencyViolation
from postpulse.models.event_models import AnalyticsEvent
from postpulse.models.summary_models import MonthlySummary, summary_doc_id


def load_summary(
    session: Session,
    owner_id: str,
    period_key: str,
    for_update: bool = False,
) -> Optional[MonthlySummary]:
    """Point read of one summary row, optionally locking it for the transaction."""
    query = select(MonthlySummary).where(
        MonthlySummary.summary_id == summary_doc_id(owner_id, period_key)
    )
    if for_update:
        query = query.with_for_update()
    row = session.exec(query).first()
    if row is not None and (row.owner_id != owner_id or row.period_key != period_key):
        raise ConsistencyViolation(
            f"Summary {row.summary_id} belongs to {row.owner_id}/{row.period_key}, "
            f"not {owner_id}/{period_key}"
        )
    return row


def write_summary(
    session: Session,
    row: Optional[MonthlySummary],
    patch: SummaryPatch,
) -> MonthlySummary:
    """Merge-upsert a patch: only summary columns are overwritten."""
    fields = patch.summary_fields()
    if row is None:
        row = MonthlySummary(
            summary_id=summary_doc_id(patch.owner_id, patch.period_key), **fields
        )
    else:
        for column, value in fields.items():
            setattr(row, column, value)
    row.sns_kind = settings.supported_sns_kind
    row.schema_version = settings.summary_schema_version
    row.updated_at = datetime.now(timezone.utc)
    session.add(row)
    return row


def scan_events(
    session: Session, owner_id: Optional[str] = None
) -> Iterator[AnalyticsEvent]:
    """Full, or per-owner, scan of the raw event store.

    The owner filter is a superset: stored ids may carry whitespace the
    extractor strips, so callers must compare ``contribution.owner_id``.
    """
    query = select(AnalyticsEvent)
    if owner_id is not None:
        query = query.where(AnalyticsEvent.owner_id.contains(owner_id, autoescape=True))
    yield from session.exec(query.order_by(AnalyticsEvent.record_id))


def resolve_reference(session: Session, owner_id: str, period_key: str) -> Optional[str]:
    """Rescan the period and return the id of its most recent event."""
    best_at, best_id = None, None
    for event in scan_events(session, owner_id):
        contribution = extract_contribution(event.to_raw())
        if contribution is None or contribution.period_key != period_key:
            continue
        if contribution.owner_id != owner_id:
            continue
        if is_newer_reference(
            best_at, best_id, contribution.published_at, contribution.record_id
        ):
            best_at, best_id = contribution.published_at, contribution.record_id
    return best_id
