from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from jinja2 import Environment, PackageLoader, select_autoescape
from loguru import logger

from ..infra.timings import incr, timeit
from ..model.events import EventDetails
from ..qr import decode_data_url
from .pdf import render_ticket_pdf
from .transport import Attachment, MailMessage, MailTransport

templates = Environment(
    loader=PackageLoader("cicadatix", "notify/templates"),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class TicketQR:
    ticket_number: str
    qr_code_data: str


@dataclass
class DispatchResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    ticket_count: int = 0
    attachments: int = 0
    skipped_pdfs: List[str] = field(default_factory=list)


def ticket_subject(count: int, event: Optional[EventDetails]) -> str:
    title = event.title if event else "Cicada Event"
    if count > 1:
        return f"Your {count} Tickets for {title}"
    return f"Your Ticket for {title}"


class NotificationDispatcher:
    """Renders ticket mail and hands it to a MailTransport.

    Never raises for delivery problems: every outcome is a DispatchResult,
    failures are logged with the recipient and counted under
    ``mail.failed``.
    """

    def __init__(
        self, transport: MailTransport, sender: str, *,
        attach_pdf: bool = True,
        pdf_renderer: Callable[..., bytes] = render_ticket_pdf,
    ) -> None:
        self.transport = transport
        self.sender = sender
        self.attach_pdf = attach_pdf
        self.pdf_renderer = pdf_renderer

    def build_ticket_message(
        self, to: str, customer_name: Optional[str],
        tickets: Sequence[TicketQR],
        event: Optional[EventDetails] = None,
    ) -> tuple[MailMessage, List[str]]:
        rendered = []
        attachments: List[Attachment] = []
        for i, t in enumerate(tickets):
            cid = f"qrcode{i}"
            rendered.append({"ticket_number": t.ticket_number,
                             "content_id": cid})
            attachments.append(Attachment(
                filename=f"{cid}.png",
                content=decode_data_url(t.qr_code_data),
                content_type="image/png",
                content_id=cid,
            ))

        skipped: List[str] = []
        if self.attach_pdf:
            for t, qr in zip(tickets, list(attachments)):
                try:
                    pdf = self.pdf_renderer(t.ticket_number, qr.content, event)
                except Exception:
                    # one bad PDF must not cost the customer the others
                    logger.bind(ticket_number=t.ticket_number).exception(
                        "PDF generation failed, skipping attachment"
                    )
                    incr("mail.pdf_failed")
                    skipped.append(t.ticket_number)
                    continue
                attachments.append(Attachment(
                    filename=f"ticket-{t.ticket_number}.pdf",
                    content=pdf,
                    content_type="application/pdf",
                ))

        html = templates.get_template("tickets.html").render(
            customer_name=customer_name,
            tickets=rendered,
            plural=len(tickets) > 1,
            event=event,
        )
        message = MailMessage(
            sender=self.sender,
            to=[to],
            subject=ticket_subject(len(tickets), event),
            html=html,
            attachments=attachments,
        )
        return message, skipped

    async def send_tickets(
        self, to: str, customer_name: Optional[str],
        tickets: Sequence[TicketQR],
        event: Optional[EventDetails] = None,
    ) -> DispatchResult:
        log = logger.bind(to=to, tickets=len(tickets))
        try:
            message, skipped = self.build_ticket_message(
                to, customer_name, tickets, event
            )
        except Exception as e:
            log.exception("could not build ticket email")
            incr("mail.failed")
            return DispatchResult(ok=False, error=str(e),
                                  ticket_count=len(tickets))

        result = await self._send(message, log)
        result.ticket_count = len(tickets)
        result.skipped_pdfs = skipped
        return result

    async def send_purchase_fallback(
        self, to: str, customer_name: Optional[str], order_id: str
    ) -> DispatchResult:
        html = templates.get_template("fallback.html").render(
            customer_name=customer_name, order_id=order_id
        )
        message = MailMessage(
            sender=self.sender,
            to=[to],
            subject="Order Confirmation - Cicada Collective",
            html=html,
            text=(
                f"Hi {customer_name or 'there'},\n\n"
                "Your order has been confirmed. You will receive your "
                f"ticket details shortly.\n\nOrder ID: {order_id}\n"
            ),
        )
        return await self._send(message, logger.bind(to=to, order_id=order_id))

    async def _send(self, message: MailMessage, log) -> DispatchResult:
        try:
            async with timeit("mail.send"):
                message_id = await self.transport.send(message)
        except Exception as e:
            log.opt(exception=e).error("email dispatch failed: {}", e)
            incr("mail.failed")
            return DispatchResult(ok=False, error=str(e),
                                  attachments=len(message.attachments))
        incr("mail.sent")
        log.info("email sent: {!r} id={}", message.subject, message_id)
        return DispatchResult(ok=True, message_id=message_id,
                              attachments=len(message.attachments))
