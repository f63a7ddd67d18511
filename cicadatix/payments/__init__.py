from ..config import Settings
from ._base import CreateSessionResult, PaymentAdapter
from ._mock import MockPay
from .session import (
    COMPLETION_TYPES, SHADOW_TYPES, PaymentSession, WebhookEvent
)


# Factory keeps server.py simple and constructor-agnostic:
def new_adapter(settings: Settings) -> PaymentAdapter:
    if settings.payment_backend == "stripe":
        from ._stripe import StripePay
        return StripePay(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
    if settings.payment_backend == "mock":
        return MockPay(secret=settings.mock_secret)
    raise RuntimeError(
        f"unknown PAYMENT_BACKEND {settings.payment_backend!r}"
    )


__all__ = [
    "PaymentAdapter", "CreateSessionResult", "MockPay", "new_adapter",
    "PaymentSession", "WebhookEvent", "COMPLETION_TYPES", "SHADOW_TYPES",
]
