import hashlib
import hmac
import json
import time

import pytest

from cicadatix.errors import InvalidPayload, WebhookVerificationError
from cicadatix.payments import MockPay, PaymentSession, WebhookEvent
from cicadatix.payments._mock import sign
from cicadatix.payments._stripe import StripePay

from tests.factories import TEST_SECRET, envelope, session_object, signed


class TestPaymentSession:
    def test_quantity_from_metadata_string(self):
        ps = PaymentSession.from_object(session_object(quantity="2"))
        assert ps.quantity() == 2

    @pytest.mark.parametrize("raw", ["2.0", "2 tickets"])
    def test_quantity_takes_leading_integer(self, raw):
        ps = PaymentSession.from_object(session_object(quantity=raw))
        assert ps.quantity() == 2

    def test_quantity_falls_back_to_line_items(self):
        obj = session_object(quantity=None)
        obj["line_items"] = {"data": [{"quantity": 2}, {"quantity": 1}]}
        assert PaymentSession.from_object(obj).quantity() == 3

    @pytest.mark.parametrize("raw", [None, "abc", "0", "-2"])
    def test_quantity_defaults_to_one(self, raw):
        ps = PaymentSession.from_object(session_object(quantity=raw))
        assert ps.quantity() == 1

    @pytest.mark.parametrize("payment_status,status,settled", [
        ("paid", "complete", True),
        ("unpaid", "complete", False),
        ("paid", "open", False),
        ("no_payment_required", "complete", False),
    ])
    def test_is_settled(self, payment_status, status, settled):
        ps = PaymentSession.from_object(session_object(
            payment_status=payment_status, status=status
        ))
        assert ps.is_settled is settled

    def test_customer_email_fallback(self):
        obj = session_object(email=None)
        obj["customer_email"] = "fallback@example.com"
        ps = PaymentSession.from_object(obj)
        assert ps.customer_email == "fallback@example.com"

    def test_event_ref(self):
        ps = PaymentSession.from_object(session_object(event_id="ev_1"))
        assert ps.event_ref == "ev_1"
        assert PaymentSession.from_object(session_object()).event_ref is None

    def test_expanded_payment_intent(self):
        obj = session_object()
        obj["payment_intent"] = {"id": "pi_expanded"}
        assert PaymentSession.from_object(obj).payment_intent == "pi_expanded"

    def test_missing_id_is_invalid(self):
        obj = session_object()
        del obj["id"]
        with pytest.raises(InvalidPayload):
            PaymentSession.from_object(obj)


class TestWebhookEvent:
    def test_completion_and_shadow_types(self):
        obj = session_object()
        assert WebhookEvent.from_envelope(envelope(obj)).is_completion
        async_ok = envelope(obj, "checkout.session.async_payment_succeeded")
        assert WebhookEvent.from_envelope(async_ok).is_completion
        shadow = WebhookEvent.from_envelope(envelope(obj, "charge.succeeded"))
        assert shadow.is_shadow and not shadow.is_completion

    @pytest.mark.parametrize("body", [
        [],
        {"id": "evt_1"},
        {"type": "checkout.session.completed"},
        {"type": "checkout.session.completed", "data": {"object": "x"}},
    ])
    def test_malformed_envelope(self, body):
        with pytest.raises(InvalidPayload):
            WebhookEvent.from_envelope(body)


class TestMockPayVerification:
    def test_accepts_valid_signature(self):
        payload, headers = signed(envelope(session_object()))
        event = MockPay(TEST_SECRET).verify_webhook(payload, headers)
        assert event.type == "checkout.session.completed"
        assert event.session().id == "cs_test_123"

    def test_rejects_bad_signature(self):
        payload, headers = signed(envelope(session_object()), secret="other")
        with pytest.raises(WebhookVerificationError):
            MockPay(TEST_SECRET).verify_webhook(payload, headers)

    def test_rejects_tampered_body(self):
        payload, headers = signed(envelope(session_object(quantity="1")))
        tampered = payload.replace(b'"quantity": "1"', b'"quantity": "9"')
        with pytest.raises(WebhookVerificationError):
            MockPay(TEST_SECRET).verify_webhook(tampered, headers)

    def test_rejects_missing_header(self):
        payload, _ = signed(envelope(session_object()))
        with pytest.raises(WebhookVerificationError):
            MockPay(TEST_SECRET).verify_webhook(payload, {})

    def test_rejects_when_secret_unset(self):
        payload, headers = signed(envelope(session_object()))
        with pytest.raises(WebhookVerificationError):
            MockPay("").verify_webhook(payload, headers)

    def test_signed_garbage_is_invalid_payload(self):
        payload = b"not json"
        headers = {"x-mockpay-signature": sign(TEST_SECRET, payload)}
        with pytest.raises(InvalidPayload):
            MockPay(TEST_SECRET).verify_webhook(payload, headers)


def stripe_header(secret: str, payload: bytes, ts: int) -> str:
    signed_payload = f"{ts}.{payload.decode()}".encode()
    sig = hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


class TestStripeVerification:
    secret = "whsec_stripe_test"

    def test_accepts_valid_signature(self):
        payload = json.dumps(envelope(session_object())).encode()
        headers = {"stripe-signature": stripe_header(
            self.secret, payload, int(time.time())
        )}
        event = StripePay(None, self.secret).verify_webhook(payload, headers)
        assert event.session().id == "cs_test_123"

    def test_rejects_stale_timestamp(self):
        payload = json.dumps(envelope(session_object())).encode()
        headers = {"stripe-signature": stripe_header(
            self.secret, payload, int(time.time()) - 3600
        )}
        with pytest.raises(WebhookVerificationError):
            StripePay(None, self.secret).verify_webhook(payload, headers)

    def test_rejects_wrong_secret(self):
        payload = json.dumps(envelope(session_object())).encode()
        headers = {"stripe-signature": stripe_header(
            "whsec_other", payload, int(time.time())
        )}
        with pytest.raises(WebhookVerificationError):
            StripePay(None, self.secret).verify_webhook(payload, headers)
