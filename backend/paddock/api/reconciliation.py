"""Operator reconciliation API routes"""
import logging
from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from paddock.core.security import require_admin_token
from paddock.db.session import get_db, get_session_factory
from paddock.schemas.reconciliation import EventRecordList, PendingTransactionList, ReplayResponse
from paddock.services.metrics_service import trigger_metrics_recompute
from paddock.services.reconciliation_service import (
    generate_unresolved_csv,
    list_stale_pending_transactions,
    list_unresolved_events,
    replay_event,
    serialize_event_record,
    serialize_transaction,
)

router = APIRouter(
    prefix="/api/reconciliation",
    tags=["reconciliation"],
    dependencies=[Depends(require_admin_token)]
)
logger = logging.getLogger(__name__)


@router.get("/events", response_model=EventRecordList)
def get_unresolved_events(
    outcome: Optional[str] = Query(None, pattern="^(applied|applied_with_warnings|failed)$"),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    """List event records that still need an operator (warnings and failures by default)"""
    records = list_unresolved_events(db, outcome=outcome, limit=limit)
    events = [serialize_event_record(r) for r in records]
    return {"events": events, "count": len(events)}


@router.post("/events/{event_id}/replay", response_model=ReplayResponse)
def replay(
    event_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory)
):
    """Re-apply a stored event payload after the underlying data gap was fixed"""
    ack = replay_event(event_id, db)
    if ack is None:
        raise HTTPException(404, "Event record not found")

    for user_id in ack.metrics_user_ids:
        background_tasks.add_task(trigger_metrics_recompute, user_id, session_factory)

    return {
        "event_id": event_id,
        "status_code": ack.status_code,
        "outcome": ack.outcome.value if ack.outcome else None,
        "error_kind": ack.error_kind.value if ack.error_kind else None,
    }


@router.get("/pending-transactions", response_model=PendingTransactionList)
def get_stale_pending_transactions(
    older_than_hours: int = Query(24, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db)
):
    """Pending transactions whose completion never arrived"""
    transactions = [serialize_transaction(t) for t in list_stale_pending_transactions(db, older_than_hours, limit)]
    return {"transactions": transactions, "count": len(transactions)}


@router.get("/report.csv")
def download_unresolved_csv(db: Session = Depends(get_db)):
    csv_text, unresolved_count = generate_unresolved_csv(db)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={
            "Content-Disposition": 'attachment; filename="unresolved_events.csv"',
            "X-Unresolved-Count": str(unresolved_count),
        },
    )
