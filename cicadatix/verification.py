from typing import Any, Dict

from loguru import logger

from . import ticketcode
from .errors import InvalidPayload
from .helpers import is_valid_email, to_iso
from .model.tickets import TicketStore, ticket_to_dict


def _projection(ticket) -> Dict[str, Any]:
    full = ticket_to_dict(ticket)
    return {
        "id": full["id"],
        "ticket_number": full["ticket_number"],
        "customer_name": full["customer_name"],
        "customer_email": full["customer_email"],
        "event": full.get("event"),
        "purchase_date": full["purchase_date"],
        "used": full["used"],
        "used_date": full["used_date"],
    }


class VerificationConsole:
    """Staff-side check-in over the ticket store."""

    def __init__(self, store: TicketStore) -> None:
        self.store = store

    async def verify_by_code(self, code: str) -> Dict[str, Any]:
        if not code or not str(code).strip():
            raise InvalidPayload("Ticket number is required")
        code = str(code).strip()
        if not ticketcode.is_valid(code):
            return {"valid": False, "error": "Invalid ticket format"}

        ticket = await self.store.find_by_number(code)
        if ticket is None:
            return {"valid": False, "error": "Ticket not found"}
        if ticket.used:
            return {
                "valid": False,
                "alreadyUsed": True,
                "usedDate": to_iso(ticket.used_date),
                "ticket": _projection(ticket),
            }
        return {"valid": True, "ticket": _projection(ticket)}

    async def verify_by_email(self, email: str) -> Dict[str, Any]:
        if not is_valid_email(email):
            raise InvalidPayload("A valid email is required")
        tickets = await self.store.find_by_email(email)
        return {
            "tickets": [_projection(t) for t in tickets],
            "count": len(tickets),
        }

    async def mark_used(self, ticket_id) -> Dict[str, Any]:
        if ticket_id is None or not str(ticket_id).strip():
            raise InvalidPayload("Ticket ID is required")
        ticket = await self.store.mark_used(str(ticket_id).strip())
        logger.info("check-in ok: {}", ticket.ticket_number)
        return {"success": True, "ticket": _projection(ticket)}
