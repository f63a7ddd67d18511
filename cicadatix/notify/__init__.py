from typing import Optional

import httpx

from ..config import Settings
from .dispatcher import DispatchResult, NotificationDispatcher, TicketQR
from .transport import (
    Attachment, MailMessage, MailTransport, OutboxTransport, ResendTransport
)


def new_transport(settings: Settings,
                  http: Optional[httpx.AsyncClient] = None) -> MailTransport:
    if settings.mail_backend == "resend":
        if not settings.resend_api_key:
            raise RuntimeError("MAIL_BACKEND=resend requires RESEND_API_KEY")
        if http is None:
            raise RuntimeError("ResendTransport requires an httpx client")
        return ResendTransport(http, settings.resend_api_key)
    if settings.mail_backend == "outbox":
        return OutboxTransport()
    raise RuntimeError(f"unknown MAIL_BACKEND {settings.mail_backend!r}")


__all__ = [
    "Attachment", "DispatchResult", "MailMessage", "MailTransport",
    "NotificationDispatcher", "OutboxTransport", "ResendTransport",
    "TicketQR", "new_transport",
]
