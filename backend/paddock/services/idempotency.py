"""Idempotency guard for webhook events

Redeliveries are detected twice: a Redis hint short-circuits the common case,
and the unique ``payment_events.event_id`` row written in the same database
transaction as the ledger mutation settles races between concurrent
deliveries. Natural keys on the ledger tables back both up.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from paddock.db.redis import cache_event_as_applied, is_event_cached_as_applied
from paddock.models.payment_event import EventOutcome, PaymentEventRecord
from paddock.schemas.events import PaymentEvent
from paddock.services.results import ErrorKind, Outcome

logger = logging.getLogger(__name__)

_RECORDED_OUTCOMES = {
    Outcome.APPLIED: EventOutcome.APPLIED,
    Outcome.APPLIED_WITH_WARNINGS: EventOutcome.APPLIED_WITH_WARNINGS,
    Outcome.FAILED: EventOutcome.FAILED,
}


def has_been_applied(event_id: str, db: Session) -> bool:
    """Fast pre-check only; correctness comes from mark_applied inside the mutation's transaction"""
    if is_event_cached_as_applied(event_id):
        return True
    record = db.query(PaymentEventRecord).filter(PaymentEventRecord.event_id == event_id).first()
    return record is not None and record.outcome == EventOutcome.APPLIED.value


def get_event_record(event_id: str, db: Session) -> Optional[PaymentEventRecord]:
    return db.query(PaymentEventRecord).filter(PaymentEventRecord.event_id == event_id).first()


def mark_applied(
    event: PaymentEvent,
    outcome: Outcome,
    db: Session,
    error_kind: Optional[ErrorKind] = None,
    error_message: Optional[str] = None
) -> bool:
    """Record the event as handled, inside the caller's open transaction.

    Must run after the handler's mutations and before commit. Returns False
    when another delivery of the same event got there first; the caller has
    to roll back and treat the delivery as a duplicate.
    """
    values = {
        "outcome": _RECORDED_OUTCOMES[outcome].value,
        "error_kind": error_kind.value if error_kind else None,
        "error_message": error_message,
        "processed_at": datetime.now(timezone.utc),
    }

    existing = get_event_record(event.id, db)
    if existing is None:
        db.add(PaymentEventRecord(
            event_id=event.id,
            event_type=event.type,
            payload=event.model_dump(mode="json"),
            event_created=event.created or None,
            **values
        ))
        try:
            db.flush()
        except IntegrityError:
            logger.info(f"Event {event.id} was recorded by a concurrent delivery")
            return False
        return True

    # An earlier delivery left warnings or a failure; upgrade it unless someone already applied it
    updated = (
        db.query(PaymentEventRecord)
        .filter(
            PaymentEventRecord.event_id == event.id,
            PaymentEventRecord.outcome != EventOutcome.APPLIED.value,
        )
        .update(values, synchronize_session=False)
    )
    return updated == 1


def record_failure(
    event: PaymentEvent,
    error_kind: ErrorKind,
    error_message: str,
    db: Session
) -> None:
    """Persist a post-verification failure for triage, in its own transaction.

    Best effort: the structured log entry written by the caller is the
    primary record, so a store that is still failing is only logged here.
    """
    try:
        if mark_applied(event, Outcome.FAILED, db, error_kind=error_kind, error_message=error_message[:2000]):
            db.commit()
        else:
            db.rollback()
    except Exception as e:
        db.rollback()
        logger.error(f"Could not record failure for event {event.id}: {e}")


def remember_applied(event_id: str) -> None:
    """Cache the applied marker after commit so redeliveries skip the database"""
    cache_event_as_applied(event_id)
