import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from .config import APP_TIMEZONE
from .models import Vendor

logger = logging.getLogger(__name__)

DEFAULT_VENDORS = ["Maes Dining", "Arike Preorder", "Simi Stitches"]


async def seed_vendors(session_factory: async_sessionmaker, names=DEFAULT_VENDORS, tz_name: str = APP_TIMEZONE) -> int:
    async with session_factory.begin() as session:
        count = (await session.execute(select(func.count()).select_from(Vendor))).scalar_one()
        if count:
            logger.info("[swiftslot] vendors already exist, skipping seed")
            return 0
        session.add_all([Vendor(name=n, timezone=tz_name) for n in names])

    logger.info("[swiftslot] seeded %d vendors", len(names))
    return len(names)
