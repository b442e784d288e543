"""PostPulse — Monthly Summary Backfill.

Recomputes every targeted summary from the raw event store, starting from
empty patches. Totals are plain sums and the reference record uses the same
tie-break as the live updater, so a backfill over the same events produces
exactly what live replay produced.

Writes are merge-upserts in sequential batches of at most 400 rows. A run
is idempotent: re-running with the same period filter rewrites the same
values, so a failed run is resumed by simply running it again.
"""

import time
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from postpulse.aggregation.contribution import extract_contribution
from postpulse.aggregation.patch import SummaryPatch, is_newer_reference
from postpulse.aggregation.store import load_summary, scan_events, write_summary
from postpulse.config import settings
from postpulse.core.errors import BackfillError, ConsistencyViolation, TransientIOError
from postpulse.core.logging import get_logger

logger = get_logger("aggregation.backfill")

MAX_BATCH_SIZE = 400

SummaryKey = Tuple[str, str]


class ReconcileResult(BaseModel):
    """Counters of one backfill run."""

    processed: int = 0  # raw events read
    skipped: int = 0  # events with no valid contribution
    filtered_out: int = 0  # valid events outside the target period
    target_groups: int = 0  # (owner, period) summaries produced
    writes_committed: int = 0
    dry_run: bool = False
    period: Optional[str] = None


def reconcile(
    raw_events: Iterable[Mapping[str, Any]],
    period: Optional[str] = None,
) -> Tuple[Dict[SummaryKey, SummaryPatch], ReconcileResult]:
    """Regroup raw events into fresh per-(owner, period) patches."""
    result = ReconcileResult(period=period)
    patches: Dict[SummaryKey, SummaryPatch] = {}
    latest: Dict[SummaryKey, datetime] = {}

    for raw in raw_events:
        result.processed += 1
        contribution = extract_contribution(raw)
        if contribution is None:
            result.skipped += 1
            continue
        if period and contribution.period_key != period:
            result.filtered_out += 1
            continue

        key = (contribution.owner_id, contribution.period_key)
        patch = patches.get(key)
        if patch is None:
            patch = patches[key] = SummaryPatch.new(*key)
        patch.merge(contribution)

        if is_newer_reference(
            latest.get(key),
            patch.reference_record_id,
            contribution.published_at,
            contribution.record_id,
        ):
            latest[key] = contribution.published_at
            patch.reference_record_id = contribution.record_id

    result.target_groups = len(patches)
    return patches, result


def write_summaries(
    session: Session,
    patches: Dict[SummaryKey, SummaryPatch],
    batch_size: int = MAX_BATCH_SIZE,
    dry_run: bool = False,
) -> int:
    """Upsert patches in sequential batches. Returns the rows committed."""
    batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
    total = len(patches)
    if dry_run:
        logger.info(f"[DRY RUN] Would write {total} summary docs")
        return 0

    committed = 0
    pending = 0
    try:
        for owner_id, period_key in sorted(patches):
            row = load_summary(session, owner_id, period_key)
            write_summary(session, row, patches[(owner_id, period_key)])
            pending += 1
            if pending >= batch_size:
                session.commit()
                committed += pending
                pending = 0
                logger.info(
                    f"Committed {committed}/{total} summary docs",
                    extra={"committed": committed},
                )
        if pending:
            session.commit()
            committed += pending
            logger.info(
                f"Committed {committed}/{total} summary docs",
                extra={"committed": committed},
            )
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(
            f"Backfill failed after {committed}/{total} summary docs: {e}",
            extra={"committed": committed},
        )
        raise BackfillError(
            f"Backfill failed after {committed}/{total} summary docs: {e}",
            committed=committed,
            total=total,
        ) from e
    except ConsistencyViolation:
        session.rollback()
        logger.error(
            f"Backfill stopped on an inconsistent summary after {committed}/{total} docs",
            extra={"committed": committed},
        )
        raise
    return committed


def run_backfill(
    session: Session,
    period: Optional[str] = None,
    dry_run: bool = False,
    batch_size: Optional[int] = None,
) -> ReconcileResult:
    """Scan the whole event store, rebuild the targeted summaries, and write them."""
    started = time.monotonic()
    logger.info(f"Starting monthly summary backfill (period={period}, dry_run={dry_run})")

    try:
        raw_events = [event.to_raw() for event in scan_events(session)]
    except SQLAlchemyError as e:
        raise TransientIOError(f"Event scan failed: {e}", operation="scan_events") from e
    logger.info(f"Loaded analytics events: {len(raw_events)}")

    patches, result = reconcile(raw_events, period)
    result.dry_run = dry_run
    logger.info(
        f"Target summary documents: {result.target_groups}, skipped analytics events: {result.skipped}"
    )

    if not patches:
        logger.info("No target periods found. Done.")
        return result

    result.writes_committed = write_summaries(
        session,
        patches,
        batch_size=batch_size or settings.backfill_batch_size,
        dry_run=dry_run,
    )
    logger.info(
        f"{'[DRY RUN] ' if dry_run else ''}Backfill completed. "
        f"Processed summary docs: {result.target_groups}",
        extra={"duration_ms": round((time.monotonic() - started) * 1000, 2)},
    )
    return result
