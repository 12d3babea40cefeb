"""Subscription model"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime, timezone
from paddock.models.base import Base


class Subscription(Base):
    """Mirror of a processor subscription's latest known state"""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    stripe_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    status = Column(String(50), nullable=False)  # 'incomplete', 'active', 'past_due', 'canceled', 'trialing', ...
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    last_event_created = Column(Integer, nullable=True)  # processor timestamp of the last applied event
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<Subscription(id={self.stripe_subscription_id}, user_id={self.user_id}, status={self.status})>"
