from typing import Any, Dict, Mapping, Optional, Tuple
import base64
import hashlib
import hmac
import json
import time
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidPayload, NotFoundError, WebhookVerificationError
from ..helpers import now_ts
from ..model.orm import Event, MockPaySession
from ._base import CreateSessionResult, PaymentAdapter
from .session import PaymentSession, WebhookEvent

SIGNATURE_HEADER = "x-mockpay-signature"

# emit kind -> (event type, payment_status, status)
EMIT_KINDS = {
    "succeeded": ("checkout.session.completed", "paid", "complete"),
    "async_succeeded": (
        "checkout.session.async_payment_succeeded", "paid", "complete"
    ),
    # bank-transfer style: checkout done, money not there yet
    "pending": ("checkout.session.completed", "unpaid", "complete"),
}


def sign(secret: str, payload: bytes) -> str:
    mac = hmac.new(secret.encode(), payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


def session_object(ps: MockPaySession) -> Dict[str, Any]:
    """The session as a processor would put it into data.object."""
    return {
        "id": ps.id,
        "object": "checkout.session",
        "payment_status": ps.payment_status,
        "status": ps.status,
        "amount_total": ps.amount,
        "currency": ps.currency,
        "customer_details": {
            "email": ps.customer_email,
            "name": ps.customer_name,
        },
        "payment_intent": ps.payment_intent,
        "metadata": {
            "event_id": ps.event_id,
            "quantity": str(ps.quantity),
        },
    }


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    name = "mock"

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def verify_webhook(
            self, payload: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        if not self.secret:
            raise WebhookVerificationError("Webhook secret not configured")
        sig = headers.get(SIGNATURE_HEADER)
        if not sig:
            raise WebhookVerificationError("No signature header")
        expected = sign(self.secret, payload)
        if not hmac.compare_digest(expected, sig):
            raise WebhookVerificationError("Invalid signature")
        try:
            envelope = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise InvalidPayload("Invalid JSON")
        return WebhookEvent.from_envelope(envelope)

    async def create_checkout(
            self, db: AsyncSession, event: Event, quantity: int, *,
            success_url: str, cancel_url: str,
            customer_email: Optional[str] = None,
            customer_name: Optional[str] = None,
    ) -> CreateSessionResult:
        psid = f"mock_cs_{uuid.uuid4().hex}"
        async with db.begin():
            db.add(MockPaySession(
                id=psid,
                event_id=event.id,
                quantity=quantity,
                amount=(event.price or 0) * quantity,
                currency=event.currency or "eur",
                customer_email=customer_email,
                customer_name=customer_name,
                status="open",
                payment_status="unpaid",
                created_at=now_ts(),
            ))
        return {"payment_session_id": psid, "redirect_url": f"/mockpay/{psid}"}

    async def retrieve_session(
            self, db: AsyncSession, session_id: str
    ) -> Optional[PaymentSession]:
        async with db.begin():
            ps = await db.get(MockPaySession, session_id)
        if ps is None:
            return None
        return PaymentSession.from_object(session_object(ps))

    async def complete(
            self, db: AsyncSession, psid: str, kind: str,
            customer_email: Optional[str] = None,
            customer_name: Optional[str] = None,
    ) -> Tuple[bytes, str]:
        """Settle a mock checkout; return the signed webhook body."""
        if kind not in EMIT_KINDS:
            raise InvalidPayload("invalid kind")
        event_type, payment_status, status = EMIT_KINDS[kind]
        async with db.begin():
            ps = await db.get(MockPaySession, psid)
            if ps is None:
                raise NotFoundError("payment session not found")
            if customer_email:
                ps.customer_email = customer_email
            if customer_name:
                ps.customer_name = customer_name
            ps.payment_status = payment_status
            ps.status = status
            if payment_status == "paid" and not ps.payment_intent:
                ps.payment_intent = f"mock_pi_{uuid.uuid4().hex[:24]}"
        envelope = {
            "id": f"evt_{uuid.uuid4().hex}",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": session_object(ps)},
        }
        payload = json.dumps(envelope).encode()
        return payload, sign(self.secret, payload)
