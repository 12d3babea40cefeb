"""Ledger service - one-time payment transactions and their money split"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Dict, Any, Tuple
import logging

from paddock.core.config import settings
from paddock.core.logging import log_reconciliation
from paddock.core.metrics import missing_prerequisite_counter
from paddock.models.transaction import Transaction, TransactionStatus, TransactionType
from paddock.schemas.events import PaymentEvent
from paddock.services.results import ErrorKind, HandlerResult
from paddock.services.token_service import TokenFulfillment, fulfill_token_purchase

logger = logging.getLogger(__name__)


class LedgerOutcome(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    MISSING = "missing"


def compute_split(total_cents: int, ratio: Optional[Decimal] = None) -> Tuple[int, int]:
    """
    Split a payment between payee and platform.

    The payee share is rounded half-up to a whole minor unit and the platform
    takes the remainder, so the two always add back up to the total.

    Args:
        total_cents: Amount paid, in minor currency units
        ratio: Payee share, defaults to PAYEE_SPLIT_RATIO

    Returns:
        (payee_amount_cents, platform_amount_cents)
    """
    if total_cents < 0:
        raise ValueError(f"Cannot split a negative amount: {total_cents}")
    ratio = settings.PAYEE_SPLIT_RATIO if ratio is None else Decimal(str(ratio))
    payee = int((Decimal(total_cents) * ratio).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return payee, total_cents - payee


def get_transaction(payment_intent_id: str, db: Session) -> Optional[Transaction]:
    return db.query(Transaction).filter(Transaction.stripe_payment_intent_id == payment_intent_id).first()


def create_pending_transaction(
    payment_intent_id: str,
    transaction_type: str,
    payer_id: Optional[str],
    payee_id: Optional[str],
    total_cents: int,
    db: Session,
    currency: Optional[str] = None,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Transaction:
    """
    Phase 1: pre-insert the pending row that a later completion event finishes.

    Called by checkout session creation once the processor has assigned the
    payment intent id. Calling it again for the same payment intent returns
    the existing row unchanged.

    Raises:
        ValueError: amount below MIN_PAYMENT_CENTS or unknown transaction type
    """
    if total_cents < settings.MIN_PAYMENT_CENTS:
        raise ValueError(
            f"Amount {total_cents} is below the minimum of {settings.MIN_PAYMENT_CENTS} cents"
        )
    try:
        transaction_type = TransactionType(transaction_type).value
    except ValueError:
        raise ValueError(f"Unknown transaction type: {transaction_type}")

    existing = get_transaction(payment_intent_id, db)
    if existing:
        return existing

    payee_amount, platform_amount = compute_split(total_cents)
    transaction = Transaction(
        stripe_payment_intent_id=payment_intent_id,
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
        transaction_type=transaction_type,
        payer_id=payer_id,
        payee_id=payee_id,
        total_amount_cents=total_cents,
        payee_amount_cents=payee_amount,
        platform_amount_cents=platform_amount,
        currency=(currency or settings.DEFAULT_CURRENCY).lower(),
        status=TransactionStatus.PENDING.value,
        transaction_metadata=metadata or {},
    )
    db.add(transaction)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent creation for the same payment intent
        db.rollback()
        return get_transaction(payment_intent_id, db)
    db.refresh(transaction)

    logger.info(
        f"Created pending {transaction_type} transaction {payment_intent_id}: "
        f"total={total_cents} payee={payee_amount} platform={platform_amount}"
    )
    return transaction


def complete_transaction(
    payment_intent_id: str,
    amount_total: Optional[int],
    db: Session,
    currency: Optional[str] = None,
    stripe_customer_id: Optional[str] = None
) -> LedgerOutcome:
    """
    Phase 2: move a pending transaction to completed, exactly once.

    Does not commit; the caller commits together with the event record.
    """
    transaction = get_transaction(payment_intent_id, db)
    if transaction is None:
        return LedgerOutcome.MISSING
    if transaction.status == TransactionStatus.COMPLETED.value:
        return LedgerOutcome.ALREADY_COMPLETED

    total = transaction.total_amount_cents
    if amount_total is not None and amount_total != total:
        # The processor's figure is what was actually charged
        logger.warning(
            f"Amount mismatch for {payment_intent_id}: pending row has {total}, "
            f"processor reports {amount_total}; using processor amount"
        )
        total = amount_total
    payee_amount, platform_amount = compute_split(total)

    values = {
        Transaction.status: TransactionStatus.COMPLETED.value,
        Transaction.total_amount_cents: total,
        Transaction.payee_amount_cents: payee_amount,
        Transaction.platform_amount_cents: platform_amount,
        Transaction.processed_at: datetime.now(timezone.utc),
        Transaction.updated_at: datetime.now(timezone.utc),
    }
    if currency:
        values[Transaction.currency] = currency.lower()
    if stripe_customer_id and not transaction.stripe_customer_id:
        values[Transaction.stripe_customer_id] = stripe_customer_id

    updated = (
        db.query(Transaction)
        .filter(
            Transaction.id == transaction.id,
            Transaction.status == TransactionStatus.PENDING.value,
        )
        .update(values, synchronize_session=False)
    )
    if updated == 0:
        return LedgerOutcome.ALREADY_COMPLETED

    logger.info(f"Completed transaction {payment_intent_id}: total={total} payee={payee_amount} platform={platform_amount}")
    return LedgerOutcome.COMPLETED


def _fulfill_tokens(event: PaymentEvent, session, natural_key: str, db: Session) -> HandlerResult:
    metadata = session.metadata
    if not metadata.user_id or not metadata.token_count or metadata.token_count <= 0:
        log_reconciliation(
            logging.ERROR,
            "Token purchase completed with unusable metadata",
            event_id=event.id,
            event_type=event.type,
            payment_intent=natural_key,
            user_id=metadata.user_id,
            token_count=metadata.token_count,
        )
        return HandlerResult.with_warning(
            ErrorKind.MALFORMED_METADATA,
            f"Token purchase {natural_key} is missing user_id or token_count",
        )

    fulfillment = fulfill_token_purchase(
        user_id=metadata.user_id,
        token_count=metadata.token_count,
        price_cents=session.amount_total or 0,
        payment_intent_id=natural_key,
        db=db,
    )
    if fulfillment == TokenFulfillment.DUPLICATE:
        return HandlerResult.duplicate(f"Token purchase {natural_key} already applied")
    return HandlerResult.applied(metrics_user_ids=[metadata.user_id])


def handle_checkout_completed(event: PaymentEvent, db: Session) -> HandlerResult:
    """
    Apply checkout.session.completed.

    One-time payments complete their pending transaction; token purchases
    also credit the buyer. Subscription checkouts carry no ledger change here,
    the subscription events that follow do the work.
    """
    session = event.checkout_session()
    metadata = session.metadata
    payer_ids = [metadata.user_id] if metadata.user_id else []

    if session.mode != "payment":
        logger.info(f"Checkout {session.id} in mode {session.mode}: no ledger change")
        return HandlerResult.applied(metrics_user_ids=payer_ids)

    is_tokens = metadata.type == TransactionType.TOKENS.value
    natural_key = session.payment_intent

    if not natural_key:
        if is_tokens:
            # Fulfillment still needs a stable per-purchase key
            return _fulfill_tokens(event, session, session.id, db)
        log_reconciliation(
            logging.ERROR,
            "Payment checkout completed without a payment intent",
            event_id=event.id,
            event_type=event.type,
            checkout_session=session.id,
        )
        return HandlerResult.with_warning(
            ErrorKind.MALFORMED_METADATA,
            f"Checkout {session.id} has no payment intent",
            metrics_user_ids=payer_ids,
        )

    outcome = complete_transaction(
        natural_key,
        session.amount_total,
        db,
        currency=session.currency,
        stripe_customer_id=session.customer,
    )

    if outcome == LedgerOutcome.MISSING and not is_tokens:
        missing_prerequisite_counter.labels(event_type=event.type).inc()
        log_reconciliation(
            logging.ERROR,
            "No pending transaction for completed payment",
            event_id=event.id,
            event_type=event.type,
            payment_intent=natural_key,
            amount_total=session.amount_total,
            user_id=metadata.user_id,
            racer_id=metadata.racer_id,
            transaction_type=metadata.type,
        )
        return HandlerResult.with_warning(
            ErrorKind.MISSING_PREREQUISITE_ROW,
            f"No pending transaction for payment intent {natural_key}",
            metrics_user_ids=payer_ids,
        )

    if is_tokens:
        return _fulfill_tokens(event, session, natural_key, db)

    if outcome == LedgerOutcome.ALREADY_COMPLETED:
        return HandlerResult.duplicate(f"Transaction {natural_key} already completed")
    return HandlerResult.applied(metrics_user_ids=payer_ids)
