from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import PersistenceError
from .models import IdempotencyKey
from .timeslots import truncate_ms

BOOKINGS_SCOPE = "bookings"


async def lookup(session: AsyncSession, key: str, scope: str) -> str | None:
    res = await session.execute(
        select(IdempotencyKey.response_body).where(
            IdempotencyKey.key == key,
            IdempotencyKey.scope == scope,
        )
    )
    return res.scalar_one_or_none()


async def store(session: AsyncSession, key: str, scope: str, body: str) -> None:
    """
    Persist the response for (key, scope) inside the caller's transaction.

    Only called after a lookup miss; hitting the unique constraint here means
    the caller raced itself and is reported as a PersistenceError.
    """
    session.add(
        IdempotencyKey(
            key=key,
            scope=scope,
            response_body=body,
            created_at=truncate_ms(datetime.now(timezone.utc)),
        )
    )
    try:
        await session.flush()
    except IntegrityError as e:
        raise PersistenceError(f"idempotency record already stored for {scope}:{key}") from e
