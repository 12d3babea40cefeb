"""PaymentEventRecord model"""
import enum

from sqlalchemy import Column, Integer, String, Text, JSON, DateTime
from datetime import datetime, timezone
from paddock.models.base import Base


class EventOutcome(str, enum.Enum):
    APPLIED = "applied"
    APPLIED_WITH_WARNINGS = "applied_with_warnings"
    FAILED = "failed"


# Outcomes an operator still has to look at
UNRESOLVED_OUTCOMES = (EventOutcome.APPLIED_WITH_WARNINGS.value, EventOutcome.FAILED.value)


class PaymentEventRecord(Base):
    """Processor webhook event log: dedup marker and reconciliation audit trail"""
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    outcome = Column(String(50), nullable=False, index=True)
    error_kind = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False)  # verified event body, replayable
    event_created = Column(Integer, nullable=True)  # processor timestamp (unix seconds)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<PaymentEventRecord(event_id={self.event_id}, type={self.event_type}, outcome={self.outcome})>"
