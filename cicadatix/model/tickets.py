from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger
from sqlalchemy import func, inspect, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from ..errors import (
    AlreadyUsedError, DuplicateSession, NotFoundError, PersistenceError
)
from ..helpers import normalize_email, now_ts, to_iso
from ..infra.sql import Gated
from ..infra.timings import timeit
from .events import event_to_dict
from .orm import IssuanceClaim, Ticket

RECENT_LIMIT_MAX = 500


@dataclass(frozen=True)
class TicketDraft:
    ticket_number: str
    qr_code_data: str
    customer_email: str
    session_id: str
    customer_name: Optional[str] = None
    payment_intent: Optional[str] = None
    event_id: Optional[str] = None


def ticket_to_dict(ticket: Ticket) -> Dict[str, Any]:
    out = {
        "id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "event_id": ticket.event_id,
        "customer_email": ticket.customer_email,
        "customer_name": ticket.customer_name,
        "session_id": ticket.session_id,
        "payment_intent": ticket.payment_intent,
        "qr_code_data": ticket.qr_code_data,
        "used": bool(ticket.used),
        "used_date": to_iso(ticket.used_date),
        "purchase_date": to_iso(ticket.purchase_date),
    }
    # only rows fetched with their event carry the nested block
    if "event" not in inspect(ticket).unloaded:
        out["event"] = (
            event_to_dict(ticket.event) if ticket.event is not None else None
        )
    return out


class TicketStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def find_by_session(self, session_id: str) -> List[Ticket]:
        async with timeit("store.find_by_session"):
            async with self.gated():
                async with self.db.begin():
                    result = await self.db.execute(
                        select(Ticket)
                        .options(joinedload(Ticket.event))
                        .where(Ticket.session_id == session_id)
                        .order_by(Ticket.purchase_date.asc(), Ticket.id.asc())
                    )
                    return list(result.scalars().all())

    async def insert_batch(
        self, drafts: Sequence[TicketDraft],
        claim_session: Optional[str] = None,
    ) -> List[Ticket]:
        """Insert all drafts in one transaction, or none of them.

        With ``claim_session`` the batch also claims that payment session;
        a second batch for the same session raises DuplicateSession.
        """
        if not drafts:
            raise PersistenceError("refusing to insert an empty batch")
        ts = now_ts()
        rows = [
            Ticket(
                id=uuid.uuid4().hex,
                ticket_number=d.ticket_number,
                event_id=d.event_id,
                customer_email=d.customer_email,
                customer_name=d.customer_name,
                session_id=d.session_id,
                payment_intent=d.payment_intent,
                qr_code_data=d.qr_code_data,
                used=False,
                used_date=None,
                purchase_date=ts,
            )
            for d in drafts
        ]
        try:
            async with timeit("store.insert_batch"):
                async with self.gated():
                    async with self.db.begin():
                        if claim_session is not None:
                            self.db.add(IssuanceClaim(
                                session_id=claim_session,
                                ticket_count=len(rows),
                                created_at=ts,
                            ))
                            # flush the claim alone so a conflict is
                            # attributed to it, not to a ticket number
                            await self.db.flush()
                        self.db.add_all(rows)
        except IntegrityError as e:
            if claim_session is not None and await self._is_claimed(
                claim_session
            ):
                raise DuplicateSession(
                    "ticket batch already issued", session_id=claim_session
                ) from e
            raise PersistenceError(
                f"ticket batch insert failed: {e.orig}",
                session_id=claim_session,
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"ticket batch insert failed: {e}", session_id=claim_session
            ) from e
        return rows

    async def _is_claimed(self, session_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                claim = await self.db.get(IssuanceClaim, session_id)
                return claim is not None

    async def find_by_number(self, ticket_number: str) -> Optional[Ticket]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Ticket)
                    .options(joinedload(Ticket.event))
                    .where(Ticket.ticket_number == ticket_number)
                )
                return result.scalars().first()

    async def find_by_email(self, email: str) -> List[Ticket]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Ticket)
                    .options(joinedload(Ticket.event))
                    .where(
                        func.lower(Ticket.customer_email)
                        == normalize_email(email)
                    )
                    .order_by(Ticket.purchase_date.desc(), Ticket.id.asc())
                )
                return list(result.scalars().all())

    async def mark_used(self, ticket_id: str) -> Ticket:
        ts = now_ts()
        try:
            async with self.gated():
                async with self.db.begin():
                    # conditional update: of two racing check-ins only one
                    # matches used = false
                    result = await self.db.execute(
                        update(Ticket)
                        .where(Ticket.id == ticket_id, Ticket.used.is_(False))
                        .values(used=True, used_date=ts)
                        .execution_options(synchronize_session=False)
                    )
                    changed = result.rowcount
                    ticket = (await self.db.execute(
                        select(Ticket)
                        .options(joinedload(Ticket.event))
                        .where(Ticket.id == ticket_id)
                        .execution_options(populate_existing=True)
                    )).scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"marking ticket used failed: {e}", ticket_id=ticket_id
            ) from e

        if ticket is None:
            raise NotFoundError("Ticket not found", ticket_id=ticket_id)
        if changed == 0:
            raise AlreadyUsedError(
                "Ticket already used", used_date=to_iso(ticket.used_date),
                ticket_id=ticket_id,
            )
        logger.bind(ticket_id=ticket_id).info(
            "ticket {} checked in", ticket.ticket_number
        )
        return ticket

    async def count(self) -> int:
        async with self.gated():
            async with self.db.begin():
                return int((await self.db.execute(
                    select(func.count()).select_from(Ticket)
                )).scalar_one())

    @staticmethod
    def clamp_limit(limit: int) -> int:
        return max(1, min(limit, RECENT_LIMIT_MAX))

    async def recent(self, limit: int = 200) -> List[Ticket]:
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Ticket)
                    .options(joinedload(Ticket.event))
                    .order_by(Ticket.purchase_date.desc(), Ticket.id.asc())
                    .limit(self.clamp_limit(limit))
                )
                return list(result.scalars().all())
