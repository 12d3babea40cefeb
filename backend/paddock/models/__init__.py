"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from paddock.models.base import Base
from paddock.models.payment_event import PaymentEventRecord
from paddock.models.transaction import Transaction
from paddock.models.subscription import Subscription
from paddock.models.token_balance import TokenBalance
from paddock.models.token_purchase import TokenPurchase
from paddock.models.fan_metrics import FanMetrics

# Export all for convenience
__all__ = [
    "Base", "PaymentEventRecord", "Transaction", "Subscription",
    "TokenBalance", "TokenPurchase", "FanMetrics"
]
