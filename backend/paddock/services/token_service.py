"""Token service - prepaid token purchases and balance crediting"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
import logging

from paddock.core.config import settings
from paddock.core.metrics import token_credit_retries_counter
from paddock.db.helpers import dialect_insert
from paddock.models.token_balance import TokenBalance
from paddock.models.token_purchase import TokenPurchase
from paddock.services.results import TokenCreditConflictError, TransientStoreError

logger = logging.getLogger(__name__)


class TokenFulfillment(str, Enum):
    CREDITED = "credited"
    DUPLICATE = "duplicate"


def fulfill_token_purchase(
    user_id: str,
    token_count: int,
    price_cents: int,
    payment_intent_id: str,
    db: Session
) -> TokenFulfillment:
    """
    Record a token purchase and credit the buyer, once per payment intent.

    The purchase row goes in first: its unique (user_id, payment intent) key
    is what stops a second delivery, including one racing this one, from
    crediting again. On a duplicate the whole session is rolled back.
    Does not commit on success.

    Args:
        user_id: Buyer
        token_count: Tokens bought (must be positive)
        price_cents: Amount paid, in minor currency units
        payment_intent_id: Source payment intent (or checkout session) id
        db: Database session

    Returns:
        TokenFulfillment.CREDITED or TokenFulfillment.DUPLICATE
    """
    if token_count <= 0:
        raise ValueError(f"Token count must be positive, got {token_count}")

    db.add(TokenPurchase(
        user_id=user_id,
        token_amount=token_count,
        price_cents=price_cents,
        stripe_payment_intent_id=payment_intent_id,
        status="completed",
    ))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info(f"Token purchase {payment_intent_id} for user {user_id} already applied")
        return TokenFulfillment.DUPLICATE

    credit_tokens(user_id, token_count, db)
    logger.info(f"Credited {token_count} tokens to user {user_id} for {payment_intent_id}")
    return TokenFulfillment.CREDITED


def credit_tokens(user_id: str, amount: int, db: Session) -> None:
    """
    Add tokens to a user's balance without losing concurrent updates.

    Uses a single server-side upsert-increment where the dialect supports it,
    otherwise a version-checked compare-and-swap. Does not commit.

    Raises:
        TokenCreditConflictError: compare-and-swap kept losing to other writers
    """
    if amount <= 0:
        raise ValueError(f"Credit amount must be positive, got {amount}")

    if settings.TOKEN_CREDIT_STRATEGY == "atomic":
        stmt = dialect_insert(db, TokenBalance)
        if stmt is not None:
            _atomic_increment(stmt, user_id, amount, db)
            return

    _optimistic_increment(user_id, amount, db)


def _atomic_increment(stmt, user_id: str, amount: int, db: Session) -> None:
    now = datetime.now(timezone.utc)
    stmt = stmt.values(
        user_id=user_id,
        balance=amount,
        total_purchased=amount,
        version=1,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={
            "balance": TokenBalance.balance + stmt.excluded.balance,
            "total_purchased": TokenBalance.total_purchased + stmt.excluded.total_purchased,
            "version": TokenBalance.version + 1,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)


def _compare_and_swap_balance(db: Session, row: TokenBalance, amount: int) -> bool:
    """Write balance + amount only if nobody changed the row since it was read"""
    updated = (
        db.query(TokenBalance)
        .filter(
            TokenBalance.id == row.id,
            TokenBalance.version == row.version,
        )
        .update(
            {
                TokenBalance.balance: row.balance + amount,
                TokenBalance.total_purchased: row.total_purchased + amount,
                TokenBalance.version: row.version + 1,
                TokenBalance.updated_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def _optimistic_increment(user_id: str, amount: int, db: Session) -> None:
    for attempt in range(1, settings.TOKEN_CREDIT_MAX_RETRIES + 1):
        row = (
            db.query(TokenBalance)
            .filter(TokenBalance.user_id == user_id)
            .populate_existing()
            .first()
        )

        if row is None:
            db.add(TokenBalance(user_id=user_id, balance=amount, total_purchased=amount, version=1))
            try:
                db.flush()
                return
            except IntegrityError as e:
                # Another writer created the row first; the session is unusable now
                db.rollback()
                raise TransientStoreError(f"Concurrent balance creation for user {user_id}") from e

        if _compare_and_swap_balance(db, row, amount):
            return

        token_credit_retries_counter.inc()
        logger.warning(
            f"Token balance for user {user_id} changed during credit "
            f"(attempt {attempt}/{settings.TOKEN_CREDIT_MAX_RETRIES}), retrying"
        )

    raise TokenCreditConflictError(
        f"Could not credit {amount} tokens to user {user_id} after "
        f"{settings.TOKEN_CREDIT_MAX_RETRIES} attempts"
    )


def get_token_balance(user_id: str, db: Session) -> Optional[Dict[str, Any]]:
    """Get current token balance information for a user"""
    balance = db.query(TokenBalance).filter(TokenBalance.user_id == user_id).first()
    if not balance:
        return None

    purchases = db.query(TokenPurchase).filter(TokenPurchase.user_id == user_id).count()
    return {
        'user_id': balance.user_id,
        'balance': balance.balance,
        'total_purchased': balance.total_purchased,
        'purchases': purchases,
        'updated_at': balance.updated_at.isoformat() if balance.updated_at else None,
    }
