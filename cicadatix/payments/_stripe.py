import asyncio
import json
from typing import Mapping, Optional

import stripe
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidPayload, WebhookVerificationError
from ..model.orm import Event
from ._base import CreateSessionResult, PaymentAdapter
from .session import PaymentSession, WebhookEvent

SIGNATURE_HEADER = "stripe-signature"


class StripePay(PaymentAdapter):
    name = "stripe"

    def __init__(self, api_key: Optional[str],
                 webhook_secret: Optional[str]) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def verify_webhook(
            self, payload: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook secret not configured")
        sig = headers.get(SIGNATURE_HEADER)
        if not sig:
            raise WebhookVerificationError("No signature header")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidPayload("Invalid payload encoding")
        try:
            stripe.WebhookSignature.verify_header(
                body, sig, self.webhook_secret,
                stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Webhook Error: {e}")
        try:
            envelope = json.loads(body)
        except json.JSONDecodeError:
            raise InvalidPayload("Invalid JSON")
        return WebhookEvent.from_envelope(envelope)

    async def create_checkout(
            self, db: AsyncSession, event: Event, quantity: int, *,
            success_url: str, cancel_url: str,
            customer_email: Optional[str] = None,
            customer_name: Optional[str] = None,
    ) -> CreateSessionResult:
        if event.price_id:
            line_item = {"price": event.price_id, "quantity": quantity}
        elif event.price:
            line_item = {
                "price_data": {
                    "currency": event.currency or "eur",
                    "product_data": {"name": event.title},
                    "unit_amount": int(event.price),
                },
                "quantity": quantity,
            }
        else:
            raise InvalidPayload("event has no price", event_id=event.id)

        params = dict(
            mode="payment",
            line_items=[line_item],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                "event_id": event.id,
                "event_title": event.title,
                "quantity": str(quantity),
            },
            api_key=self.api_key,
        )
        if customer_email:
            params["customer_email"] = customer_email
        session = await asyncio.to_thread(
            stripe.checkout.Session.create, **params
        )
        logger.info("stripe checkout session {} created", session.id)
        return {"payment_session_id": session.id, "redirect_url": session.url}

    async def retrieve_session(
            self, db: AsyncSession, session_id: str
    ) -> Optional[PaymentSession]:
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve, session_id,
                api_key=self.api_key, expand=["line_items"],
            )
        except stripe.InvalidRequestError:
            return None
        return PaymentSession.from_object(json.loads(str(session)))
