from typing import Any, Dict, Optional

from loguru import logger

from . import qr, ticketcode
from .errors import InvalidPayload
from .helpers import is_valid_email
from .infra.timings import incr
from .model.events import EventDetails, EventStore
from .model.orm import ADMIN_SESSION_ID
from .model.tickets import TicketDraft, TicketStore
from .notify import NotificationDispatcher, TicketQR


async def issue_admin_ticket(
    email: Optional[str], customer_name: Optional[str], *,
    store: TicketStore, events: EventStore,
    dispatcher: NotificationDispatcher,
) -> Dict[str, Any]:
    """Issue one ticket outside any payment (comps, guest list).

    Uses the admin session id, so the payment duplicate check never applies;
    attaches to the next upcoming event when there is one.
    """
    if not email:
        raise InvalidPayload("Email is required")
    email = email.strip()
    if not is_valid_email(email):
        raise InvalidPayload("Invalid email format")
    customer_name = (customer_name or "").strip() or None

    number = ticketcode.generate()
    event = await events.next_upcoming()
    [ticket] = await store.insert_batch([TicketDraft(
        ticket_number=number,
        qr_code_data=qr.encode(number),
        customer_email=email,
        customer_name=customer_name,
        session_id=ADMIN_SESSION_ID,
        event_id=event.id if event is not None else None,
    )])
    logger.info("admin ticket created: {} for {}", number, email)
    incr("tickets.issued")
    incr("tickets.admin_issued")

    dispatch = await dispatcher.send_tickets(
        email,
        customer_name or "Guest",
        [TicketQR(ticket.ticket_number, ticket.qr_code_data)],
        EventDetails.of(event),
    )
    return {
        "success": True,
        "ticket_number": ticket.ticket_number,
        "customer_email": ticket.customer_email,
        "customer_name": ticket.customer_name,
        "qr_code_data": ticket.qr_code_data,
        "event_id": ticket.event_id,
        "email_sent": dispatch.ok,
    }
