"""Reconciliation service - surface and replay events that need an operator"""
import csv
from io import StringIO
from sqlalchemy.orm import Session
from datetime import datetime, timezone, timedelta
from typing import Optional, Dict, Any, List, Tuple
import logging

from paddock.core.logging import log_reconciliation
from paddock.core.otel import pipeline_span, record_ack
from paddock.models.payment_event import PaymentEventRecord, UNRESOLVED_OUTCOMES
from paddock.models.transaction import Transaction, TransactionStatus
from paddock.schemas.events import PaymentEvent
from paddock.services.webhook_service import WebhookAck, apply_verified_event

logger = logging.getLogger(__name__)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_event_record(record: PaymentEventRecord) -> Dict[str, Any]:
    return {
        'event_id': record.event_id,
        'event_type': record.event_type,
        'outcome': record.outcome,
        'error_kind': record.error_kind,
        'error_message': record.error_message,
        'event_created': record.event_created,
        'created_at': _isoformat(record.created_at),
        'processed_at': _isoformat(record.processed_at),
    }


def serialize_transaction(transaction: Transaction) -> Dict[str, Any]:
    return {
        'stripe_payment_intent_id': transaction.stripe_payment_intent_id,
        'transaction_type': transaction.transaction_type,
        'payer_id': transaction.payer_id,
        'payee_id': transaction.payee_id,
        'total_amount_cents': transaction.total_amount_cents,
        'payee_amount_cents': transaction.payee_amount_cents,
        'platform_amount_cents': transaction.platform_amount_cents,
        'currency': transaction.currency,
        'status': transaction.status,
        'created_at': _isoformat(transaction.created_at),
    }


def list_unresolved_events(
    db: Session,
    outcome: Optional[str] = None,
    limit: int = 100
) -> List[PaymentEventRecord]:
    """Event records still needing attention, newest first"""
    query = db.query(PaymentEventRecord)
    if outcome:
        query = query.filter(PaymentEventRecord.outcome == outcome)
    else:
        query = query.filter(PaymentEventRecord.outcome.in_(UNRESOLVED_OUTCOMES))
    return query.order_by(PaymentEventRecord.created_at.desc()).limit(limit).all()


def list_stale_pending_transactions(
    db: Session,
    older_than_hours: int = 24,
    limit: int = 100
) -> List[Transaction]:
    """Pending rows whose completion event never arrived (or never matched)"""
    cutoff = datetime.now(timezone.utc) - timedelta(hours=older_than_hours)
    return (
        db.query(Transaction)
        .filter(
            Transaction.status == TransactionStatus.PENDING.value,
            Transaction.created_at <= cutoff,
        )
        .order_by(Transaction.created_at.asc())
        .limit(limit)
        .all()
    )


def replay_event(event_id: str, db: Session) -> Optional[WebhookAck]:
    """
    Re-apply a stored, previously verified event payload.

    Typical use: the pending transaction was missing, an operator has since
    inserted it, and the completion event is replayed. Natural keys make
    replaying an already applied event a no-op.

    Returns:
        None if no event record exists for event_id
    """
    record = db.query(PaymentEventRecord).filter(PaymentEventRecord.event_id == event_id).first()
    if not record:
        return None

    event = PaymentEvent.model_validate(record.payload)
    previous_outcome = record.outcome
    with pipeline_span("reconciliation.replay", {"webhook.previous_outcome": previous_outcome}) as span:
        ack = apply_verified_event(event, db, force=True)
        record_ack(span, ack)

    log_reconciliation(
        logging.INFO,
        "Operator replayed event",
        event_id=event.id,
        event_type=event.type,
        previous_outcome=previous_outcome,
        outcome=ack.outcome.value if ack.outcome else None,
        status_code=ack.status_code,
    )
    return ack


def generate_unresolved_csv(db: Session) -> Tuple[str, int]:
    """
    Export unresolved events as CSV for offline reconciliation.

    Returns:
        (csv_text, number_of_rows)
    """
    records = list_unresolved_events(db, limit=10000)

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["eventId", "eventType", "outcome", "errorKind", "errorMessage", "eventCreated", "processedAt"])
    for record in records:
        writer.writerow([
            record.event_id,
            record.event_type,
            record.outcome,
            record.error_kind or "",
            record.error_message or "",
            record.event_created or "",
            _isoformat(record.processed_at) or "",
        ])

    logger.info("Reconciliation export complete with %s unresolved events", len(records))
    return output.getvalue(), len(records)
