import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

from .errors import PersistenceError

logger = logging.getLogger(__name__)

Base = declarative_base()


def get_engine(database_url: str, echo: bool = False):
    return create_async_engine(database_url, echo=echo, future=True)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )


async def init_models(engine):
    from . import models  # noqa: F401  (registers tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime.

    PostgreSQL keeps the offset natively; SQLite drops it, so values are
    normalized to UTC on write and re-tagged as UTC on read. Naive values
    are rejected on write.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


@contextmanager
def storage_errors(operation: str):
    """Re-raise unexpected SQLAlchemy failures as PersistenceError, after logging them."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.exception("[swiftslot] %s failed", operation)
        raise PersistenceError(f"{operation} failed") from e
