"""Tagged results and error kinds shared by the webhook pipeline"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class WebhookState(str, Enum):
    RECEIVED = "received"
    VERIFIED = "verified"
    ROUTED = "routed"
    APPLIED = "applied"
    APPLIED_WITH_WARNINGS = "applied_with_warnings"
    REJECTED = "rejected"
    ACKNOWLEDGED = "acknowledged"


class Outcome(str, Enum):
    APPLIED = "applied"
    APPLIED_WITH_WARNINGS = "applied_with_warnings"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    RETRYABLE = "retryable_error"
    FAILED = "failed"


class ErrorKind(str, Enum):
    VERIFICATION = "verification"
    UNKNOWN_EVENT_TYPE = "unknown_event_type"
    MISSING_PREREQUISITE_ROW = "missing_prerequisite_row"
    MALFORMED_METADATA = "malformed_metadata"
    DUPLICATE_APPLICATION = "duplicate_application"
    TRANSIENT_STORE = "transient_store"
    HANDLER_FAILURE = "handler_failure"
    METRICS_RECOMPUTE = "metrics_recompute"


class VerificationError(Exception):
    """Unauthenticated, forged or malformed webhook envelope"""

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class TransientStoreError(Exception):
    """Store failure before anything was durably applied; the delivery may be retried"""


class TokenCreditConflictError(TransientStoreError):
    """Optimistic token credit kept losing to concurrent writers"""


@dataclass
class HandlerResult:
    outcome: Outcome
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    metrics_user_ids: List[str] = field(default_factory=list)

    @classmethod
    def applied(cls, metrics_user_ids=None, message: Optional[str] = None) -> "HandlerResult":
        return cls(Outcome.APPLIED, message=message, metrics_user_ids=list(metrics_user_ids or []))

    @classmethod
    def with_warning(cls, error_kind: ErrorKind, message: str, metrics_user_ids=None) -> "HandlerResult":
        return cls(Outcome.APPLIED_WITH_WARNINGS, error_kind, message, list(metrics_user_ids or []))

    @classmethod
    def duplicate(cls, message: Optional[str] = None) -> "HandlerResult":
        return cls(Outcome.DUPLICATE, ErrorKind.DUPLICATE_APPLICATION, message)

    @classmethod
    def ignored(cls, error_kind: Optional[ErrorKind] = None, message: Optional[str] = None) -> "HandlerResult":
        return cls(Outcome.IGNORED, error_kind, message)
