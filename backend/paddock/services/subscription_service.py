"""Subscription service - mirror processor subscription state locally

Events for one subscription can arrive out of order. Every write stores the
processor's event timestamp in ``last_event_created``; by default the last
event processed wins. With SUBSCRIPTION_ORDERING_GUARD enabled, writes older
than the stored timestamp are skipped instead.
"""
from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import logging

from paddock.core.config import settings
from paddock.core.logging import log_reconciliation
from paddock.core.metrics import missing_prerequisite_counter
from paddock.db.helpers import dialect_insert
from paddock.models.subscription import Subscription
from paddock.schemas.events import EventType, PaymentEvent
from paddock.services.results import ErrorKind, HandlerResult, TransientStoreError

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing")


class SyncOutcome(str, Enum):
    APPLIED = "applied"
    STALE = "stale"


def _to_datetime(timestamp: Optional[int]) -> Optional[datetime]:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def get_subscription(subscription_id: str, db: Session) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.stripe_subscription_id == subscription_id).first()


def _ordering_condition(event_created: Optional[int]):
    if not settings.SUBSCRIPTION_ORDERING_GUARD or not event_created:
        return None
    return or_(
        Subscription.last_event_created.is_(None),
        Subscription.last_event_created <= event_created,
    )


def sync_subscription(
    subscription_id: str,
    user_id: Optional[str],
    status: str,
    current_period_end: Optional[int],
    event_created: Optional[int],
    db: Session
) -> SyncOutcome:
    """
    Upsert the subscription row keyed by the processor subscription id.

    A missing user_id or period end keeps whatever the row already has.
    Does not commit.

    Args:
        subscription_id: Processor subscription id
        user_id: Owning user, required when the row does not exist yet
        status: Processor status ('active', 'past_due', 'canceled', ...)
        current_period_end: Renewal timestamp (unix seconds)
        event_created: Processor timestamp of the event being applied
        db: Database session

    Returns:
        SyncOutcome.STALE when the ordering guard skipped an older event
    """
    period_end = _to_datetime(current_period_end)
    now = datetime.now(timezone.utc)
    condition = _ordering_condition(event_created)

    stmt = dialect_insert(db, Subscription)
    if stmt is not None:
        if user_id is None:
            # NOT NULL is checked before the conflict clause, so the insert row needs an owner too
            existing = get_subscription(subscription_id, db)
            if existing is None:
                raise ValueError(f"Cannot create subscription {subscription_id} without an owner")
            user_id = existing.user_id
        stmt = stmt.values(
            stripe_subscription_id=subscription_id,
            user_id=user_id,
            status=status,
            current_period_end=period_end,
            last_event_created=event_created,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["stripe_subscription_id"],
            set_={
                "user_id": func.coalesce(stmt.excluded.user_id, Subscription.user_id),
                "status": stmt.excluded.status,
                "current_period_end": func.coalesce(stmt.excluded.current_period_end, Subscription.current_period_end),
                "last_event_created": func.coalesce(stmt.excluded.last_event_created, Subscription.last_event_created),
                "updated_at": stmt.excluded.updated_at,
            },
            where=condition,
        )
        result = db.execute(stmt)
        if result.rowcount == 0:
            logger.info(f"Skipped stale event for subscription {subscription_id} (created {event_created})")
            return SyncOutcome.STALE
        return SyncOutcome.APPLIED

    existing = get_subscription(subscription_id, db)
    if existing is None:
        if user_id is None:
            raise ValueError(f"Cannot create subscription {subscription_id} without an owner")
        db.add(Subscription(
            stripe_subscription_id=subscription_id,
            user_id=user_id,
            status=status,
            current_period_end=period_end,
            last_event_created=event_created,
        ))
        try:
            db.flush()
        except IntegrityError as e:
            db.rollback()
            raise TransientStoreError(f"Concurrent creation of subscription {subscription_id}") from e
        return SyncOutcome.APPLIED

    values = {Subscription.status: status, Subscription.updated_at: now}
    if user_id:
        values[Subscription.user_id] = user_id
    if period_end:
        values[Subscription.current_period_end] = period_end
    if event_created:
        values[Subscription.last_event_created] = event_created

    query = db.query(Subscription).filter(Subscription.id == existing.id)
    if condition is not None:
        query = query.filter(condition)
    if query.update(values, synchronize_session=False) == 0:
        logger.info(f"Skipped stale event for subscription {subscription_id} (created {event_created})")
        return SyncOutcome.STALE
    return SyncOutcome.APPLIED


def _missing_owner(event: PaymentEvent, subscription_id: str) -> HandlerResult:
    missing_prerequisite_counter.labels(event_type=event.type).inc()
    log_reconciliation(
        logging.ERROR,
        "Subscription event has no resolvable owner",
        event_id=event.id,
        event_type=event.type,
        subscription=subscription_id,
    )
    return HandlerResult.with_warning(
        ErrorKind.MISSING_PREREQUISITE_ROW,
        f"No user_id for subscription {subscription_id} and no existing row",
    )


def _resolve_owner(candidate: Optional[str], subscription_id: str, db: Session) -> Optional[str]:
    if candidate:
        return candidate
    existing = get_subscription(subscription_id, db)
    return existing.user_id if existing else None


def handle_subscription_event(event: PaymentEvent, db: Session) -> HandlerResult:
    """customer.subscription.created / updated / deleted"""
    subscription = event.subscription()
    status = "canceled" if event.type == EventType.SUBSCRIPTION_DELETED.value else subscription.status

    owner = _resolve_owner(subscription.metadata.user_id, subscription.id, db)
    if owner is None:
        return _missing_owner(event, subscription.id)

    outcome = sync_subscription(
        subscription.id,
        owner,
        status,
        subscription.period_end(),
        event.created or None,
        db,
    )
    if outcome == SyncOutcome.STALE:
        return HandlerResult.applied(message=f"Stale event for subscription {subscription.id}")

    logger.info(f"Subscription {subscription.id} for user {owner} is now {status}")
    return HandlerResult.applied(metrics_user_ids=[owner])


def handle_invoice_paid(event: PaymentEvent, db: Session) -> HandlerResult:
    """invoice.paid / invoice.payment_succeeded: the owning subscription renewed"""
    invoice = event.invoice()
    subscription_id = invoice.subscription_id()
    if not subscription_id:
        logger.info(f"Invoice {invoice.id} is not tied to a subscription, nothing to sync")
        return HandlerResult.ignored(message=f"Invoice {invoice.id} has no subscription")

    owner = _resolve_owner(invoice.owner_user_id(), subscription_id, db)
    if owner is None:
        return _missing_owner(event, subscription_id)

    outcome = sync_subscription(
        subscription_id,
        owner,
        "active",
        invoice.renewal_period_end(),
        event.created or None,
        db,
    )
    if outcome == SyncOutcome.STALE:
        return HandlerResult.applied(message=f"Stale invoice event for subscription {subscription_id}")

    logger.info(f"Invoice {invoice.id} renewed subscription {subscription_id} for user {owner}")
    return HandlerResult.applied(metrics_user_ids=[owner])
