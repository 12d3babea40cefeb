"""Pydantic schemas for the operator reconciliation API"""
from pydantic import BaseModel
from typing import List, Optional


class EventRecordResponse(BaseModel):
    event_id: str
    event_type: str
    outcome: str
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    event_created: Optional[int] = None
    created_at: Optional[str] = None
    processed_at: Optional[str] = None


class EventRecordList(BaseModel):
    events: List[EventRecordResponse]
    count: int


class ReplayResponse(BaseModel):
    event_id: str
    status_code: int
    outcome: Optional[str] = None
    error_kind: Optional[str] = None


class PendingTransactionResponse(BaseModel):
    stripe_payment_intent_id: str
    transaction_type: str
    payer_id: Optional[str] = None
    payee_id: Optional[str] = None
    total_amount_cents: int
    payee_amount_cents: int
    platform_amount_cents: int
    currency: str
    status: str
    created_at: Optional[str] = None


class PendingTransactionList(BaseModel):
    transactions: List[PendingTransactionResponse]
    count: int


class TokenBalanceResponse(BaseModel):
    user_id: str
    balance: int
    total_purchased: int
    purchases: int
    updated_at: Optional[str] = None
