"""TokenBalance model"""
from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint
from datetime import datetime, timezone
from paddock.models.base import Base


class TokenBalance(Base):
    """User prepaid token balance"""
    __tablename__ = "token_balances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)

    balance = Column(Integer, default=0, nullable=False)
    total_purchased = Column(Integer, default=0, nullable=False)  # lifetime, never decreases
    version = Column(Integer, default=1, nullable=False)  # bumped on every write, for compare-and-swap

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_token_balances_balance_non_negative'),
    )

    def __repr__(self):
        return f"<TokenBalance(user_id={self.user_id}, balance={self.balance}, total_purchased={self.total_purchased})>"
