"""Fan metrics service - derived per-fan aggregates

Aggregates are recomputed from the ledger rather than incremented, so a
missed or failed recompute is corrected by the fan's next relevant event.
"""
from sqlalchemy import func
from sqlalchemy.orm import Session
from datetime import datetime, timezone, timedelta
from typing import Callable, Dict, Any
import logging

from paddock.core.config import settings
from paddock.core.logging import log_reconciliation
from paddock.core.metrics import metrics_recompute_failures_counter
from paddock.db.helpers import dialect_insert
from paddock.models.fan_metrics import FanMetrics
from paddock.models.subscription import Subscription
from paddock.models.token_purchase import TokenPurchase
from paddock.models.transaction import Transaction, TransactionStatus, TransactionType
from paddock.services.results import ErrorKind
from paddock.services.subscription_service import ACTIVE_STATUSES

logger = logging.getLogger(__name__)


def _compute_aggregates(user_id: str, db: Session) -> Dict[str, int]:
    window_start = datetime.now(timezone.utc) - timedelta(days=settings.METRICS_WINDOW_DAYS)
    completed = Transaction.status == TransactionStatus.COMPLETED.value

    total_tips = db.query(func.coalesce(func.sum(Transaction.total_amount_cents), 0)).filter(
        Transaction.payer_id == user_id,
        Transaction.transaction_type == TransactionType.TIP.value,
        completed,
    ).scalar()

    active_subscriptions = db.query(func.count(Subscription.id)).filter(
        Subscription.user_id == user_id,
        Subscription.status.in_(ACTIVE_STATUSES),
    ).scalar()

    # Token purchases are counted from their own table so they are not summed twice
    transaction_spend = db.query(func.coalesce(func.sum(Transaction.total_amount_cents), 0)).filter(
        Transaction.payer_id == user_id,
        Transaction.transaction_type != TransactionType.TOKENS.value,
        completed,
        Transaction.processed_at >= window_start,
    ).scalar()

    token_spend = db.query(func.coalesce(func.sum(TokenPurchase.price_cents), 0)).filter(
        TokenPurchase.user_id == user_id,
        TokenPurchase.created_at >= window_start,
    ).scalar()

    return {
        "total_tips_cents": int(total_tips or 0),
        "active_subscriptions_count": int(active_subscriptions or 0),
        "monthly_spend_cents_30d": int(transaction_spend or 0) + int(token_spend or 0),
    }


def recompute_fan_metrics(user_id: str, db: Session) -> Dict[str, Any]:
    """Recompute and store the fan_metrics row for a user; commits"""
    aggregates = _compute_aggregates(user_id, db)
    now = datetime.now(timezone.utc)

    stmt = dialect_insert(db, FanMetrics)
    if stmt is not None:
        stmt = stmt.values(user_id=user_id, updated_at=now, **aggregates)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={**aggregates, "updated_at": now},
        )
        db.execute(stmt)
    else:
        row = db.query(FanMetrics).filter(FanMetrics.user_id == user_id).first()
        if row is None:
            row = FanMetrics(user_id=user_id)
            db.add(row)
        for key, value in aggregates.items():
            setattr(row, key, value)
        row.updated_at = now

    db.commit()
    logger.debug(f"Recomputed fan metrics for user {user_id}: {aggregates}")
    return {"user_id": user_id, **aggregates}


def trigger_metrics_recompute(user_id: str, session_factory: Callable[[], Session]) -> bool:
    """
    Best-effort recompute in its own session, run after the webhook response.

    Never raises and is never retried; a failure is logged and counted.

    Returns:
        True if the metrics row was refreshed
    """
    db = None
    try:
        db = session_factory()
        recompute_fan_metrics(user_id, db)
        return True
    except Exception as e:
        if db is not None:
            db.rollback()
        metrics_recompute_failures_counter.inc()
        log_reconciliation(
            logging.WARNING,
            "Fan metrics recompute failed",
            user_id=user_id,
            error_kind=ErrorKind.METRICS_RECOMPUTE.value,
            error=str(e),
        )
        return False
    finally:
        if db is not None:
            db.close()
