from abc import ABC, abstractmethod
from typing import Mapping, Optional, TypedDict

from sqlalchemy.ext.asyncio import AsyncSession

from ..model.orm import Event
from .session import PaymentSession, WebhookEvent


class CreateSessionResult(TypedDict):
    payment_session_id: str
    redirect_url: str


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class PaymentAdapter(ABC):
    name: str = ""

    @abstractmethod
    def verify_webhook(
            self, payload: bytes, headers: Mapping[str, str]
    ) -> WebhookEvent:
        """Authenticate the raw body; raise WebhookVerificationError."""

    @abstractmethod
    async def create_checkout(
            self, db: AsyncSession, event: Event, quantity: int, *,
            success_url: str, cancel_url: str,
            customer_email: Optional[str] = None,
            customer_name: Optional[str] = None,
    ) -> CreateSessionResult: ...

    @abstractmethod
    async def retrieve_session(
            self, db: AsyncSession, session_id: str
    ) -> Optional[PaymentSession]: ...
