from __future__ import annotations
import base64
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from loguru import logger

from ..errors import DispatchError

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str
    # set for images referenced from the HTML as cid:<content_id>
    content_id: Optional[str] = None


@dataclass
class MailMessage:
    sender: str
    to: List[str]
    subject: str
    html: str
    text: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)


class MailTransport(ABC):
    @abstractmethod
    async def send(self, message: MailMessage) -> str:
        """Hand the message over; return the provider's message id."""


class OutboxTransport(MailTransport):
    """Keeps sent mail in memory. Development and tests."""

    def __init__(self) -> None:
        self.sent: List[MailMessage] = []

    async def send(self, message: MailMessage) -> str:
        self.sent.append(message)
        message_id = f"outbox_{uuid.uuid4().hex[:12]}"
        logger.info(
            "outbox: {!r} to {} ({} attachments) id={}",
            message.subject, ", ".join(message.to),
            len(message.attachments), message_id,
        )
        return message_id


class ResendTransport(MailTransport):
    def __init__(self, http: httpx.AsyncClient, api_key: str,
                 url: str = RESEND_API_URL) -> None:
        self.http = http
        self.api_key = api_key
        self.url = url

    def _body(self, message: MailMessage) -> dict:
        body = {
            "from": message.sender,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            body["text"] = message.text
        if message.attachments:
            items = []
            for a in message.attachments:
                item = {
                    "filename": a.filename,
                    "content": base64.b64encode(a.content).decode(),
                    "content_type": a.content_type,
                }
                if a.content_id:
                    item["content_id"] = a.content_id
                items.append(item)
            body["attachments"] = items
        return body

    async def send(self, message: MailMessage) -> str:
        try:
            r = await self.http.post(
                self.url,
                json=self._body(message),
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise DispatchError(f"mail API unreachable: {e}") from e
        if r.status_code >= 300:
            raise DispatchError(
                f"mail API answered {r.status_code}: {r.text[:200]}"
            )
        return str(r.json().get("id", ""))
