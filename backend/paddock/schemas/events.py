"""Pydantic schemas for processor webhook events"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


def _expandable_id(value: Any) -> Any:
    """Stripe sends either an id string or the expanded object for references"""
    if isinstance(value, dict):
        return value.get("id")
    return value


class EventMetadata(BaseModel):
    """String-valued metadata the checkout flow attaches for reconciliation"""
    model_config = ConfigDict(extra="allow")

    user_id: Optional[str] = None
    racer_id: Optional[str] = None
    type: Optional[str] = None
    token_count: Optional[int] = None
    description: Optional[str] = None

    @field_validator("token_count", mode="before")
    @classmethod
    def parse_token_count(cls, v):
        # Metadata values arrive as strings; anything unparseable counts as absent
        if v is None or v == "":
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @field_validator("user_id", "racer_id", "type", "description", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class CheckoutSessionObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    mode: Optional[str] = None  # 'payment' | 'subscription' | 'setup'
    payment_intent: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @field_validator("payment_intent", "customer", "subscription", mode="before")
    @classmethod
    def expand_ids(cls, v):
        return _expandable_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def none_metadata(cls, v):
        return v or {}


class SubscriptionObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: str
    customer: Optional[str] = None
    current_period_end: Optional[int] = None
    items: Optional[Dict[str, Any]] = None
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @field_validator("customer", mode="before")
    @classmethod
    def expand_ids(cls, v):
        return _expandable_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def none_metadata(cls, v):
        return v or {}

    def period_end(self) -> Optional[int]:
        """Renewal timestamp; newer API versions only carry it per item"""
        if self.current_period_end:
            return self.current_period_end
        item_ends = [
            item.get("current_period_end")
            for item in (self.items or {}).get("data", [])
            if isinstance(item, dict) and item.get("current_period_end")
        ]
        return max(item_ends) if item_ends else None


class InvoiceObject(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    subscription: Optional[str] = None
    customer: Optional[str] = None
    status: Optional[str] = None
    period_end: Optional[int] = None
    lines: Optional[Dict[str, Any]] = None
    subscription_details: Optional[Dict[str, Any]] = None
    parent: Optional[Dict[str, Any]] = None
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @field_validator("subscription", "customer", mode="before")
    @classmethod
    def expand_ids(cls, v):
        return _expandable_id(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def none_metadata(cls, v):
        return v or {}

    def _parent_subscription_details(self) -> Dict[str, Any]:
        return (self.parent or {}).get("subscription_details") or {}

    def subscription_id(self) -> Optional[str]:
        if self.subscription:
            return self.subscription
        return _expandable_id(self._parent_subscription_details().get("subscription"))

    def owner_user_id(self) -> Optional[str]:
        for details in (self.subscription_details, self._parent_subscription_details()):
            user_id = ((details or {}).get("metadata") or {}).get("user_id")
            if user_id:
                return str(user_id)
        return self.metadata.user_id

    def renewal_period_end(self) -> Optional[int]:
        """Period end of the subscription line, falling back to the invoice's own"""
        line_ends: List[int] = []
        for line in (self.lines or {}).get("data", []):
            period = (line or {}).get("period") or {}
            if period.get("end"):
                line_ends.append(period["end"])
        if line_ends:
            return max(line_ends)
        return self.period_end


class EventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: Dict[str, Any]


class PaymentEvent(BaseModel):
    """Verified processor event envelope; ``data.object`` is typed per handler"""
    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    created: int = 0
    livemode: bool = False
    data: EventData

    def checkout_session(self) -> CheckoutSessionObject:
        return CheckoutSessionObject.model_validate(self.data.object)

    def subscription(self) -> SubscriptionObject:
        return SubscriptionObject.model_validate(self.data.object)

    def invoice(self) -> InvoiceObject:
        return InvoiceObject.model_validate(self.data.object)
