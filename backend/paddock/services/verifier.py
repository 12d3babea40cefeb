"""Webhook signature verification"""
import logging
from typing import Optional

import stripe
from pydantic import ValidationError

from paddock.core.config import settings
from paddock.core.metrics import verification_failures_counter
from paddock.schemas.events import PaymentEvent
from paddock.services.results import VerificationError

logger = logging.getLogger(__name__)


def verify_event(
    payload: bytes,
    sig_header: Optional[str],
    secret: Optional[str] = None,
    tolerance: Optional[int] = None
) -> PaymentEvent:
    """Authenticate the raw request body and parse it into a typed event.

    The signature covers the exact bytes received, so the body is checked
    before any JSON parsing and must never be re-serialized first.

    Raises:
        VerificationError: missing header or secret, bad encoding, bad or
            stale signature, or a body that is not a valid event envelope
    """
    secret = settings.STRIPE_WEBHOOK_SECRET if secret is None else secret
    tolerance = settings.STRIPE_WEBHOOK_TOLERANCE if tolerance is None else tolerance

    try:
        if not secret:
            logger.error("Webhook secret not configured")
            raise VerificationError("missing_secret", "Webhook secret not configured")
        if not sig_header:
            raise VerificationError("missing_signature", "Missing stripe-signature header")

        try:
            body = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        except UnicodeDecodeError:
            raise VerificationError("invalid_payload", "Body is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance)
        except stripe.SignatureVerificationError as e:
            raise VerificationError("invalid_signature", str(e))

        try:
            return PaymentEvent.model_validate_json(body)
        except ValidationError as e:
            raise VerificationError("invalid_payload", f"Invalid event envelope: {e.error_count()} error(s)")
    except VerificationError as e:
        verification_failures_counter.labels(reason=e.reason).inc()
        logger.warning(f"Webhook verification failed ({e.reason}): {e}")
        raise
