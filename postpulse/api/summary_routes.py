"""PostPulse — Summary, Billing Window & Reconcile Routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from postpulse.aggregation.backfill import ReconcileResult, run_backfill
from postpulse.aggregation.billing_cycle import (
    BillingCycleContext,
    current_and_previous_window,
    parse_period_key,
    resolve_anchor_day,
)
from postpulse.aggregation.store import load_summary
from postpulse.analyzer.breakdown_engine import compose_owner_breakdowns
from postpulse.core.errors import BackfillError, ConsistencyViolation, TransientIOError
from postpulse.core.logging import get_logger
from postpulse.database import get_session
from postpulse.models.analysis_models import OwnerBreakdowns
from postpulse.models.event_models import OwnerAccount
from postpulse.models.summary_models import SummaryView

logger = get_logger("api.summaries")

router = APIRouter(tags=["Summaries"])


# ── Request Models ──


class OwnerAccountRequest(BaseModel):
    """Body for PUT /owners/{owner_id}."""

    timezone: str = ""
    created_at: Optional[datetime] = None
    contract_start_date: Optional[datetime] = None


class ReconcileRequest(BaseModel):
    """Body for POST /reconcile."""

    period: Optional[str] = None
    """Only rebuild this YYYY-MM period."""
    dry_run: bool = False


def _require_period(period: Optional[str]) -> None:
    if period and parse_period_key(period) is None:
        raise HTTPException(status_code=422, detail=f"Invalid period {period!r}, expected YYYY-MM")


# ── Endpoints ──


@router.get("/summaries/{owner_id}/{period_key}", response_model=SummaryView)
async def get_summary(owner_id: str, period_key: str, session: Session = Depends(get_session)):
    """Monthly summary with negative transient totals displayed as 0."""
    try:
        row = load_summary(session, owner_id, period_key)
    except ConsistencyViolation as e:
        raise HTTPException(status_code=500, detail=f"Consistency violation: {e}")
    if row is None:
        raise HTTPException(status_code=404, detail=f"No summary for {owner_id} {period_key}")
    return SummaryView.from_summary(row)


@router.put("/owners/{owner_id}")
async def upsert_owner(
    owner_id: str, request: OwnerAccountRequest, session: Session = Depends(get_session)
):
    """Store the timezone and anchor dates used for billing windows."""
    account = session.get(OwnerAccount, owner_id) or OwnerAccount(owner_id=owner_id)
    account.timezone = request.timezone
    account.created_at = request.created_at
    account.contract_start_date = request.contract_start_date
    session.add(account)
    session.commit()
    return {"status": "success", "owner_id": owner_id}


@router.get("/owners/{owner_id}/billing-window", response_model=BillingCycleContext)
async def get_billing_window(
    owner_id: str,
    now: Optional[datetime] = Query(None, description="Reference instant (default: now)"),
    session: Session = Depends(get_session),
):
    """Current and previous billing windows for an owner."""
    account = session.get(OwnerAccount, owner_id)
    tz_name = account.timezone if account else None
    anchor_day = (
        resolve_anchor_day(account.created_at, account.contract_start_date, tz_name)
        if account
        else 1
    )
    try:
        return current_and_previous_window(now, tz_name, anchor_day)
    except ConsistencyViolation as e:
        raise HTTPException(status_code=500, detail=f"Consistency violation: {e}")


@router.get("/owners/{owner_id}/kpi-breakdowns", response_model=OwnerBreakdowns)
async def get_kpi_breakdowns(
    owner_id: str,
    period: Optional[str] = Query(None, description="YYYY-MM (default: current window)"),
    session: Session = Depends(get_session),
):
    """Dashboard breakdown cards for an owner's reporting window."""
    _require_period(period)
    try:
        return compose_owner_breakdowns(session, owner_id, period=period)
    except ConsistencyViolation as e:
        raise HTTPException(status_code=500, detail=f"Consistency violation: {e}")


@router.post("/reconcile", response_model=ReconcileResult)
async def trigger_reconcile(request: ReconcileRequest, session: Session = Depends(get_session)):
    """Recompute summaries from raw events (authoritative overwrite)."""
    _require_period(request.period)
    try:
        return run_backfill(session, period=request.period, dry_run=request.dry_run)
    except BackfillError as e:
        logger.error(f"Reconcile failed: {e}", extra={"committed": e.committed})
        raise HTTPException(
            status_code=503,
            detail=f"Reconcile failed after {e.committed}/{e.total} summary docs",
        )
    except (TransientIOError, SQLAlchemyError) as e:
        logger.error(f"Reconcile failed: {e}")
        raise HTTPException(status_code=503, detail=f"Reconcile failed: {e}")
    except ConsistencyViolation as e:
        logger.error(f"Consistency violation during reconcile: {e}")
        raise HTTPException(status_code=500, detail=f"Consistency violation: {e}")
