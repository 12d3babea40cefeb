"""FanMetrics model"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime, timezone
from paddock.models.base import Base


class FanMetrics(Base):
    """Derived per-fan aggregates, fully recomputed on each relevant event"""
    __tablename__ = "fan_metrics"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    total_tips_cents = Column(Integer, default=0, nullable=False)
    active_subscriptions_count = Column(Integer, default=0, nullable=False)
    monthly_spend_cents_30d = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
