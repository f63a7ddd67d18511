from .orm import (
    ADMIN_SESSION_ID, Base, Event, IssuanceClaim, MockPaySession, Ticket
)
from .events import EventDetails, EventStore, event_to_dict
from .tickets import TicketDraft, TicketStore, ticket_to_dict

__all__ = [
    "ADMIN_SESSION_ID", "Base", "Event", "IssuanceClaim", "MockPaySession",
    "Ticket", "EventDetails", "EventStore", "event_to_dict", "TicketDraft",
    "TicketStore", "ticket_to_dict",
]
