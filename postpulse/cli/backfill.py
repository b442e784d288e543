"""PostPulse — Backfill CLI.

Usage:
    postpulse-backfill [--dry-run] [--period=YYYY-MM]
"""

import argparse
import sys
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from postpulse.aggregation.backfill import run_backfill
from postpulse.aggregation.billing_cycle import parse_period_key
from postpulse.core.errors import BackfillError, ConsistencyViolation, TransientIOError
from postpulse.core.logging import get_logger

logger = get_logger("cli.backfill")


def _period(value: str) -> str:
    if parse_period_key(value) is None:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}")
    return value.strip()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Recompute monthly KPI summaries from the raw analytics events."
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Extract and group events, log counts, write nothing.",
    )
    parser.add_argument(
        "--period",
        "--month",
        dest="period",
        type=_period,
        default=None,
        help="Only rebuild summaries for this YYYY-MM period.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Rows per commit (capped at 400; defaults to settings).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    from postpulse.database import engine, init_db

    try:
        init_db()
        with Session(engine) as session:
            result = run_backfill(
                session,
                period=args.period,
                dry_run=args.dry_run,
                batch_size=args.batch_size,
            )
    except BackfillError as e:
        logger.error(
            f"Backfill failed: {e}. Re-run with the same --period to resume.",
            extra={"committed": e.committed},
        )
        return 1
    except (TransientIOError, ConsistencyViolation, SQLAlchemyError) as e:
        logger.error(f"Backfill failed: {e}")
        return 1

    logger.info(
        f"processed={result.processed} skipped={result.skipped} "
        f"groups={result.target_groups} committed={result.writes_committed}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
