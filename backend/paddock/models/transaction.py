"""Transaction model"""
import enum

from sqlalchemy import Column, Integer, String, JSON, DateTime, CheckConstraint, Index
from datetime import datetime, timezone
from paddock.models.base import Base


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"  # terminal


class TransactionType(str, enum.Enum):
    TIP = "tip"
    SUBSCRIPTION = "subscription"
    SPONSORSHIP = "sponsorship"
    TOKENS = "tokens"


class Transaction(Base):
    """One-time payment ledger row, keyed by the processor payment intent"""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=False, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True)
    transaction_type = Column(String(50), nullable=False)  # 'tip', 'subscription', 'sponsorship', 'tokens'
    payer_id = Column(String(255), nullable=True, index=True)
    payee_id = Column(String(255), nullable=True, index=True)  # racer receiving the payee share

    # Money, in minor currency units
    total_amount_cents = Column(Integer, nullable=False)
    payee_amount_cents = Column(Integer, nullable=False)
    platform_amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")

    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    transaction_metadata = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        CheckConstraint(
            'payee_amount_cents + platform_amount_cents = total_amount_cents',
            name='ck_transactions_split_conserves_total'
        ),
        CheckConstraint('total_amount_cents >= 0', name='ck_transactions_total_non_negative'),
        Index('ix_transactions_payer_status', 'payer_id', 'status'),
    )

    def __repr__(self):
        return f"<Transaction(payment_intent={self.stripe_payment_intent_id}, status={self.status}, total={self.total_amount_cents})>"
