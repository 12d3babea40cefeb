"""Webhook signature verification tests"""
import json
import time

import pytest

from paddock.services.results import VerificationError
from paddock.services.verifier import verify_event

from conftest import WEBHOOK_SECRET, build_event, sign_payload


def _signed(event: dict, secret: str = WEBHOOK_SECRET, timestamp=None):
    payload = json.dumps(event)
    return payload.encode("utf-8"), sign_payload(payload, secret, timestamp)


@pytest.mark.critical
class TestVerifyEvent:
    """Signature is checked over the raw bytes before anything is parsed"""

    def test_valid_signature_returns_typed_event(self):
        event = build_event("checkout.session.completed", {"id": "cs_1", "mode": "payment"}, event_id="evt_ok")
        payload, header = _signed(event)

        parsed = verify_event(payload, header)

        assert parsed.id == "evt_ok"
        assert parsed.type == "checkout.session.completed"
        assert parsed.checkout_session().mode == "payment"

    def test_tampered_body_is_rejected(self):
        event = build_event("checkout.session.completed", {"id": "cs_1", "amount_total": 1000})
        payload, header = _signed(event)
        tampered = payload.replace(b"1000", b"9000")

        with pytest.raises(VerificationError) as exc_info:
            verify_event(tampered, header)
        assert exc_info.value.reason == "invalid_signature"

    def test_reserialized_body_is_rejected(self):
        """Whitespace changes alone invalidate the signature"""
        event = build_event("invoice.paid", {"id": "in_1"})
        payload, header = _signed(event)
        reserialized = json.dumps(json.loads(payload), indent=2).encode("utf-8")

        with pytest.raises(VerificationError):
            verify_event(reserialized, header)

    def test_wrong_secret_is_rejected(self):
        event = build_event("invoice.paid", {"id": "in_1"})
        payload, header = _signed(event, secret="whsec_someone_else")

        with pytest.raises(VerificationError) as exc_info:
            verify_event(payload, header)
        assert exc_info.value.reason == "invalid_signature"

    def test_missing_header_is_rejected(self):
        payload, _ = _signed(build_event("invoice.paid", {"id": "in_1"}))

        with pytest.raises(VerificationError) as exc_info:
            verify_event(payload, None)
        assert exc_info.value.reason == "missing_signature"

    def test_missing_secret_is_rejected(self):
        payload, header = _signed(build_event("invoice.paid", {"id": "in_1"}))

        with pytest.raises(VerificationError) as exc_info:
            verify_event(payload, header, secret="")
        assert exc_info.value.reason == "missing_secret"

    def test_stale_timestamp_is_rejected(self):
        event = build_event("invoice.paid", {"id": "in_1"})
        payload, header = _signed(event, timestamp=int(time.time()) - 3600)

        with pytest.raises(VerificationError) as exc_info:
            verify_event(payload, header, tolerance=300)
        assert exc_info.value.reason == "invalid_signature"

    def test_garbage_header_is_rejected(self):
        payload, _ = _signed(build_event("invoice.paid", {"id": "in_1"}))

        with pytest.raises(VerificationError):
            verify_event(payload, "not-a-signature")

    def test_signed_but_malformed_envelope_is_rejected(self):
        """A correctly signed body without the event fields is still not an event"""
        payload = json.dumps({"hello": "world"})
        header = sign_payload(payload)

        with pytest.raises(VerificationError) as exc_info:
            verify_event(payload.encode("utf-8"), header)
        assert exc_info.value.reason == "invalid_payload"

    def test_non_utf8_body_is_rejected(self):
        with pytest.raises(VerificationError) as exc_info:
            verify_event(b"\xff\xfe\x00", "t=1,v1=abc")
        assert exc_info.value.reason == "invalid_payload"
