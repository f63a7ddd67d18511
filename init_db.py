import asyncio
import os
from datetime import timedelta

from loguru import logger

from cicadatix.config import Settings
from cicadatix.helpers import today_utc
from cicadatix.infra.sql import create_schema, make_async_engine
from cicadatix.logs import configure_logging
from cicadatix.model import EventStore

# Seed event
SeedTitle = os.getenv("SEED_EVENT_TITLE", "Cicada Night")
SeedLocation = os.getenv("SEED_EVENT_LOCATION", "Munich")
SeedDaysAhead = int(os.getenv("SEED_EVENT_DAYS_AHEAD", "30"))
SeedPriceCents = int(os.getenv("SEED_EVENT_PRICE", "2500"))


async def seed_event(events: EventStore):
    if await events.next_upcoming() is not None:
        logger.info("upcoming event exists, not seeding")
        return None
    event = await events.create({
        "title": SeedTitle,
        "date": (today_utc() + timedelta(days=SeedDaysAhead)).isoformat(),
        "time": "20:00",
        "location": SeedLocation,
        "price": SeedPriceCents,
        "currency": "eur",
    })
    logger.info("seeded event {} on {}", event.title, event.date)
    return event


async def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    engine, SessionAsync, gated = make_async_engine(
        settings.database_url, **settings.engine_options()
    )
    try:
        await create_schema(engine)
        logger.info("schema created")
        async with SessionAsync() as db:
            await seed_event(EventStore(db=db, gated=gated))
    finally:
        await engine.dispose()


if __name__ == '__main__':
    asyncio.run(main())
