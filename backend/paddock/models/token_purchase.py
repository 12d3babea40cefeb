"""TokenPurchase model"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from datetime import datetime, timezone
from paddock.models.base import Base


class TokenPurchase(Base):
    """Append-only audit row, one per applied token purchase"""
    __tablename__ = "token_purchases"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    token_amount = Column(Integer, nullable=False)
    price_cents = Column(Integer, nullable=False)
    # Payment intent id, or the checkout session id when the processor sent none
    stripe_payment_intent_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="completed")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('user_id', 'stripe_payment_intent_id', name='uq_token_purchases_user_payment_intent'),
    )

    def __repr__(self):
        return f"<TokenPurchase(user_id={self.user_id}, tokens={self.token_amount}, payment_intent={self.stripe_payment_intent_id})>"
