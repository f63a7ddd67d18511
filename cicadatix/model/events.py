from __future__ import annotations
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InvalidPayload, NotFoundError
from ..helpers import now_ts, today_utc
from ..infra.sql import Gated
from .orm import Event

EDITABLE_FIELDS = (
    "title", "date", "time", "location", "image", "price_id", "price",
    "currency",
)


@dataclass(frozen=True)
class EventDetails:
    """Snapshot of the event fields a ticket email shows."""
    title: str
    date: str
    time: Optional[str]
    location: Optional[str]

    @classmethod
    def of(cls, event: Optional[Event]) -> Optional["EventDetails"]:
        if event is None:
            return None
        return cls(
            title=event.title,
            date=event.date.isoformat(),
            time=event.time,
            location=event.location,
        )


def event_to_dict(event: Event) -> Dict[str, Any]:
    return {
        "id": event.id,
        "title": event.title,
        "date": event.date.isoformat(),
        "time": event.time,
        "location": event.location,
        "image": event.image,
        "price_id": event.price_id,
        "price": event.price,
        "currency": event.currency,
    }


def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if "date" in out and not isinstance(out["date"], date):
        try:
            out["date"] = date.fromisoformat(str(out["date"]))
        except ValueError:
            raise InvalidPayload("date must be YYYY-MM-DD")
    if "price" in out and out["price"] is not None:
        try:
            out["price"] = int(out["price"])
        except (TypeError, ValueError):
            raise InvalidPayload("price must be an integer amount in cents")
    if "title" in out and not (out["title"] or "").strip():
        raise InvalidPayload("title is required")
    return out


class EventStore:
    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    async def get(self, event_id: str) -> Optional[Event]:
        async with self.gated():
            async with self.db.begin():
                return await self.db.get(Event, event_id)

    async def next_upcoming(self, today: Optional[date] = None) -> Optional[Event]:
        today = today or today_utc()
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Event)
                    .where(Event.date >= today)
                    .order_by(Event.date.asc(), Event.id.asc())
                    .limit(1)
                )
                return result.scalars().first()

    async def resolve(
        self, explicit_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Optional[Event]:
        """Event a purchase belongs to: the referenced one, else the next
        upcoming one, else None."""
        if explicit_id:
            event = await self.get(explicit_id)
            if event is not None:
                return event
            logger.warning("event {} not found, using next upcoming",
                           explicit_id)
        return await self.next_upcoming(today)

    async def list_upcoming(self, today: Optional[date] = None) -> List[Event]:
        today = today or today_utc()
        async with self.gated():
            async with self.db.begin():
                result = await self.db.execute(
                    select(Event)
                    .where(Event.date >= today)
                    .order_by(Event.date.asc(), Event.id.asc())
                )
                return list(result.scalars().all())

    async def create(self, fields: Dict[str, Any]) -> Event:
        clean = _clean_fields(fields)
        if "title" not in clean or "date" not in clean:
            raise InvalidPayload("title and date are required")
        event = Event(id=uuid.uuid4().hex, created_at=now_ts(), **clean)
        async with self.gated():
            async with self.db.begin():
                self.db.add(event)
        logger.info("event created: {} {}", event.id, event.title)
        return event

    async def update(self, event_id: str, fields: Dict[str, Any]) -> Event:
        clean = _clean_fields(fields)
        async with self.gated():
            async with self.db.begin():
                event = await self.db.get(Event, event_id)
                if event is None:
                    raise NotFoundError("Event not found", event_id=event_id)
                for k, v in clean.items():
                    setattr(event, k, v)
        return event
