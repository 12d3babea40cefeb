"""Dispatch table from processor event type to handler"""
import logging
from typing import Callable, Dict

from sqlalchemy.orm import Session

from paddock.schemas.events import EventType, PaymentEvent
from paddock.services.ledger_service import handle_checkout_completed
from paddock.services.results import ErrorKind, HandlerResult
from paddock.services.subscription_service import handle_invoice_paid, handle_subscription_event

logger = logging.getLogger(__name__)

Handler = Callable[[PaymentEvent, Session], HandlerResult]

EVENT_HANDLERS: Dict[str, Handler] = {
    EventType.CHECKOUT_COMPLETED.value: handle_checkout_completed,
    EventType.INVOICE_PAID.value: handle_invoice_paid,
    EventType.INVOICE_PAYMENT_SUCCEEDED.value: handle_invoice_paid,
    EventType.SUBSCRIPTION_CREATED.value: handle_subscription_event,
    EventType.SUBSCRIPTION_UPDATED.value: handle_subscription_event,
    EventType.SUBSCRIPTION_DELETED.value: handle_subscription_event,
}


def is_handled(event_type: str) -> bool:
    return event_type in EVENT_HANDLERS


def route_event(event: PaymentEvent, db: Session) -> HandlerResult:
    """Run the handler for the event's type.

    Unrecognized types are acknowledged as no-ops so new processor event
    types never block delivery.
    """
    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.info(f"Unhandled event type {event.type} ({event.id}), acknowledging as no-op")
        return HandlerResult.ignored(ErrorKind.UNKNOWN_EVENT_TYPE, f"Unhandled event type {event.type}")
    return handler(event, db)
