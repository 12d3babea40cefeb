"""Webhook pipeline: verify, deduplicate, route, apply, acknowledge

Each delivery walks Received -> Verified -> Routed -> Applied (or
AppliedWithWarnings) -> Acknowledged. The acknowledgment policy decides the
HTTP status from the tagged result of the last step:

* verification failure: 400, nothing is processed
* store failure before anything durable was applied: 503, the processor
  retries and every mutation is safe to replay
* everything else, including handler failures: 200 after a structured
  reconciliation log entry, so one bad event cannot start a retry storm
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from paddock.core.logging import log_reconciliation
from paddock.core.metrics import transient_store_errors_counter, webhook_events_counter
from paddock.core.otel import pipeline_span, record_ack
from paddock.db.helpers import is_transient_store_error
from paddock.schemas.events import PaymentEvent
from paddock.services.idempotency import has_been_applied, mark_applied, record_failure, remember_applied
from paddock.services.results import (
    ErrorKind,
    HandlerResult,
    Outcome,
    TransientStoreError,
    VerificationError,
    WebhookState,
)
from paddock.services.router import is_handled, route_event
from paddock.services.verifier import verify_event

logger = logging.getLogger(__name__)

_DURABLE_OUTCOMES = (Outcome.APPLIED, Outcome.APPLIED_WITH_WARNINGS)
_APPLIED_STATES = {
    Outcome.APPLIED: WebhookState.APPLIED,
    Outcome.APPLIED_WITH_WARNINGS: WebhookState.APPLIED_WITH_WARNINGS,
}


@dataclass
class WebhookAck:
    status_code: int
    body: Dict[str, Any]
    state: WebhookState
    outcome: Optional[Outcome] = None
    error_kind: Optional[ErrorKind] = None
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    metrics_user_ids: List[str] = field(default_factory=list)


def classify_store_error(exc: BaseException) -> ErrorKind:
    """Map an exception raised while applying an event to its error kind"""
    if isinstance(exc, TransientStoreError) or is_transient_store_error(exc):
        return ErrorKind.TRANSIENT_STORE
    return ErrorKind.HANDLER_FAILURE


def _acknowledge(event: PaymentEvent, result: HandlerResult) -> WebhookAck:
    metrics_label = event.type if is_handled(event.type) else "unhandled"
    webhook_events_counter.labels(event_type=metrics_label, outcome=result.outcome.value).inc()
    user_ids = result.metrics_user_ids if result.outcome in _DURABLE_OUTCOMES else []
    return WebhookAck(
        status_code=200,
        body={"received": True},
        state=WebhookState.ACKNOWLEDGED,
        outcome=result.outcome,
        error_kind=result.error_kind,
        event_id=event.id,
        event_type=event.type,
        metrics_user_ids=user_ids,
    )


def _commit_result(event: PaymentEvent, result: HandlerResult, db: Session) -> HandlerResult:
    """Mark and commit durable outcomes; roll back everything else"""
    if result.outcome not in _DURABLE_OUTCOMES:
        db.rollback()
        return result

    if not mark_applied(event, result.outcome, db, error_kind=result.error_kind, error_message=result.message):
        # A concurrent delivery of this event committed first
        db.rollback()
        return HandlerResult.duplicate(f"Event {event.id} applied by a concurrent delivery")

    db.commit()
    if result.outcome == Outcome.APPLIED:
        remember_applied(event.id)
    return result


def apply_verified_event(event: PaymentEvent, db: Session, force: bool = False) -> WebhookAck:
    """
    Apply an already verified event and decide the acknowledgment.

    Also used by the reconciliation replay, which passes ``force`` to skip the
    applied pre-check; natural keys still stop double application.
    """
    logger.debug(f"Event {event.id} ({event.type}): {WebhookState.VERIFIED.value}")

    try:
        if not force and is_handled(event.type) and has_been_applied(event.id, db):
            logger.info(f"Webhook event {event.id} already applied")
            return _acknowledge(event, HandlerResult.duplicate(f"Event {event.id} already applied"))

        result = route_event(event, db)
        logger.debug(f"Event {event.id} ({event.type}): {WebhookState.ROUTED.value} -> {result.outcome.value}")
        result = _commit_result(event, result, db)
        if result.outcome in _APPLIED_STATES:
            logger.debug(f"Event {event.id} ({event.type}): {_APPLIED_STATES[result.outcome].value}")
    except Exception as e:
        db.rollback()
        error_kind = classify_store_error(e)

        if error_kind == ErrorKind.TRANSIENT_STORE:
            transient_store_errors_counter.labels(event_type=event.type).inc()
            webhook_events_counter.labels(event_type=event.type, outcome=Outcome.RETRYABLE.value).inc()
            log_reconciliation(
                logging.WARNING,
                "Transient store error, asking processor to retry",
                event_id=event.id,
                event_type=event.type,
                error_kind=error_kind.value,
                error=str(e),
            )
            return WebhookAck(
                status_code=503,
                body={"received": False, "retryable": True},
                state=WebhookState.REJECTED,
                outcome=Outcome.RETRYABLE,
                error_kind=error_kind,
                event_id=event.id,
                event_type=event.type,
            )

        log_reconciliation(
            logging.ERROR,
            "Webhook handler failed, acknowledging to stop retries",
            event_id=event.id,
            event_type=event.type,
            error_kind=error_kind.value,
            error=str(e),
            exc_info=True,
        )
        record_failure(event, error_kind, str(e), db)
        result = HandlerResult(Outcome.FAILED, error_kind, str(e))
        return _acknowledge(event, result)

    if result.outcome == Outcome.APPLIED_WITH_WARNINGS:
        logger.warning(f"Event {event.id} applied with warnings: {result.message}")
    elif result.outcome == Outcome.APPLIED:
        logger.info(f"Successfully processed webhook event {event.id} of type {event.type}")
    return _acknowledge(event, result)


def process_payment_webhook(payload: bytes, sig_header: Optional[str], db: Session) -> WebhookAck:
    """
    Process one webhook delivery end to end.

    Args:
        payload: Raw request body as bytes (must not be parsed or re-serialized)
        sig_header: Stripe-Signature header value
        db: Database session

    Returns:
        WebhookAck with the status code and body to send, and the users whose
        fan metrics should be recomputed once the response is out
    """
    with pipeline_span("webhook.process", {"webhook.payload_bytes": len(payload)}) as span:
        logger.debug(f"Webhook delivery: {WebhookState.RECEIVED.value} ({len(payload)} bytes)")
        try:
            event = verify_event(payload, sig_header)
        except VerificationError as e:
            ack = WebhookAck(
                status_code=400,
                body={"received": False, "error": str(e)},
                state=WebhookState.REJECTED,
                error_kind=ErrorKind.VERIFICATION,
            )
            record_ack(span, ack, rejection_reason=e.reason)
            return ack

        ack = apply_verified_event(event, db)
        record_ack(span, ack)
        return ack
