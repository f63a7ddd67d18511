"""Payment-completion reconciliation.

Turns one verified payment notification into exactly one persisted ticket
batch plus one confirmation email, no matter how often the processor
redelivers it:

    Received -> Verified -> DuplicateCheck -> {Skip | Issue} -> Notified -> Done

Verification happens in the payment adapter before ``handle_event`` is
called. The duplicate check is a read of the session's existing tickets;
the hard guarantee is the issuance claim inserted in the same transaction as
the batch (see ``TicketStore.insert_batch``), so two deliveries racing past
the read still commit only one batch.

Persistence and QR encoding failures propagate (the webhook answers 5xx and
the processor redelivers); an encoding failure first sends the plain purchase
confirmation. Mail failures do not: tickets are the source of truth and stay
retrievable by session id and by email.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from loguru import logger

from . import qr, ticketcode
from .errors import DuplicateSession, EncodingError
from .infra.timings import incr, timeit
from .model.events import EventDetails, EventStore
from .model.orm import Ticket
from .model.tickets import TicketDraft, TicketStore
from .notify import DispatchResult, NotificationDispatcher, TicketQR
from .payments.session import PaymentSession, WebhookEvent

# outcomes
ISSUED = "issued"
DUPLICATE = "duplicate"
NOT_SETTLED = "not_settled"
MISSING_EMAIL = "missing_email"
IGNORED = "ignored"


@dataclass
class ReconcileResult:
    outcome: str
    session_id: Optional[str] = None
    event_type: Optional[str] = None
    tickets: List[Ticket] = field(default_factory=list)
    dispatch: Optional[DispatchResult] = None

    @property
    def issued(self) -> bool:
        return self.outcome == ISSUED

    def to_dict(self) -> dict:
        return {
            "received": True,
            "outcome": self.outcome,
            "session_id": self.session_id,
            "count": len(self.tickets),
            "email_sent": (
                self.dispatch.ok if self.dispatch is not None else None
            ),
        }


class Reconciler:
    def __init__(
        self, *,
        store: TicketStore,
        events: EventStore,
        dispatcher: NotificationDispatcher,
        generate_number: Callable[[], str] = ticketcode.generate,
        encode_qr: Callable[[str], str] = qr.encode,
    ) -> None:
        self.store = store
        self.events = events
        self.dispatcher = dispatcher
        self.generate_number = generate_number
        self.encode_qr = encode_qr

    async def handle_event(self, event: WebhookEvent) -> ReconcileResult:
        log = logger.bind(event_id=event.id, event_type=event.type)
        if event.is_shadow:
            log.info("charge-side event acknowledged, checkout event issues")
            incr("webhook.shadow")
            return ReconcileResult(IGNORED, event_type=event.type)
        if not event.is_completion:
            log.info("unhandled event type acknowledged")
            incr("webhook.unhandled")
            return ReconcileResult(IGNORED, event_type=event.type)

        result = await self.reconcile(event.session())
        result.event_type = event.type
        return result

    async def reconcile(self, session: PaymentSession) -> ReconcileResult:
        log = logger.bind(session_id=session.id)

        if not session.is_settled:
            log.info(
                "session not settled yet (payment_status={}, status={})",
                session.payment_status, session.status,
            )
            incr("reconcile.not_settled")
            return ReconcileResult(NOT_SETTLED, session_id=session.id)

        existing = await self.store.find_by_session(session.id)
        if existing:
            log.info("{} ticket(s) already issued, skipping", len(existing))
            incr("reconcile.duplicate")
            return ReconcileResult(DUPLICATE, session_id=session.id,
                                   tickets=existing)

        if not session.customer_email:
            log.error("no customer email on session, no tickets issued")
            incr("reconcile.missing_email")
            return ReconcileResult(MISSING_EMAIL, session_id=session.id)

        quantity = session.quantity()
        event = await self.events.resolve(session.event_ref)
        if event is None:
            log.warning("no event resolved, issuing without event")

        drafts = []
        try:
            async with timeit("reconcile.build_drafts"):
                for _ in range(quantity):
                    number = self.generate_number()
                    drafts.append(TicketDraft(
                        ticket_number=number,
                        qr_code_data=self.encode_qr(number),
                        customer_email=session.customer_email,
                        customer_name=session.customer_name,
                        session_id=session.id,
                        payment_intent=session.payment_intent,
                        event_id=event.id if event is not None else None,
                    ))
        except EncodingError:
            # nothing persisted; tell the buyer the order went through and
            # let the processor redeliver
            log.exception("ticket generation failed, sending fallback")
            incr("reconcile.generation_failed")
            await self.dispatcher.send_purchase_fallback(
                session.customer_email, session.customer_name, session.id
            )
            raise

        try:
            tickets = await self.store.insert_batch(
                drafts, claim_session=session.id
            )
        except DuplicateSession:
            # a concurrent delivery committed between our read and write
            log.info("lost issuance race, batch already committed")
            incr("reconcile.duplicate")
            return ReconcileResult(
                DUPLICATE, session_id=session.id,
                tickets=await self.store.find_by_session(session.id),
            )
        log.info("issued {} ticket(s) for {}", len(tickets),
                 session.customer_email)
        incr("reconcile.issued")
        incr("tickets.issued", len(tickets))

        dispatch = await self.dispatcher.send_tickets(
            session.customer_email,
            session.customer_name,
            [TicketQR(t.ticket_number, t.qr_code_data) for t in tickets],
            EventDetails.of(event),
        )
        if not dispatch.ok:
            log.warning("tickets persisted but email failed: {}",
                        dispatch.error)
        return ReconcileResult(ISSUED, session_id=session.id,
                               tickets=tickets, dispatch=dispatch)
