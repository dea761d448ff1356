"""
Payment initialization and confirmation.

A payment moves pending -> success or pending -> failed exactly once. The
move is a conditional UPDATE on `status = 'pending'`, so duplicate or
concurrent webhook deliveries can only ever apply it one time; a success
marks the owning booking paid in the same transaction.
"""
import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import storage_errors
from .errors import NotFoundError, PersistenceError, ValidationError
from .events import to_json
from .models import (
    Booking,
    Payment,
    BOOKING_PAID,
    PAYMENT_FAILED,
    PAYMENT_PENDING,
    PAYMENT_SUCCESS,
)
from .timeslots import truncate_ms

logger = logging.getLogger(__name__)

PAYMENT_EVENTS = {
    "charge.success": PAYMENT_SUCCESS,
    "charge.failed": PAYMENT_FAILED,
}

REF_ATTEMPTS = 3
_REF_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class ConfirmationResult:
    payment_id: int
    booking_id: int
    status: str
    already_processed: bool = False


def new_payment_ref() -> str:
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(9))
    return f"PAY_{int(time.time() * 1000)}_{suffix}"


async def initialize_payment(session_factory: async_sessionmaker, booking_id: int) -> str:
    with storage_errors("initialize_payment"):
        async with session_factory() as session:
            booking = await session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")

        for _ in range(REF_ATTEMPTS):
            ref = new_payment_ref()
            try:
                async with session_factory.begin() as session:
                    session.add(
                        Payment(
                            booking_id=booking_id,
                            ref=ref,
                            status=PAYMENT_PENDING,
                            created_at=truncate_ms(datetime.now(timezone.utc)),
                        )
                    )
            except IntegrityError:
                logger.warning("[swiftslot] payment ref collision, regenerating: %s", ref)
                continue
            logger.info("[swiftslot] payment %s initialized for booking %s", ref, booking_id)
            return ref

    raise PersistenceError(f"could not allocate a unique payment ref for booking {booking_id}")


async def _mark_booking_paid(session: AsyncSession, booking_id: int) -> None:
    await session.execute(
        update(Booking).where(Booking.id == booking_id).values(status=BOOKING_PAID)
    )


async def _find_payment(session_factory: async_sessionmaker, reference: str) -> Payment | None:
    async with session_factory() as session:
        res = await session.execute(select(Payment).where(Payment.ref == reference))
        return res.scalar_one_or_none()


async def confirm_payment(
    session_factory: async_sessionmaker,
    event_type: str | None,
    reference: str | None,
    raw_event=None,
) -> ConfirmationResult:
    new_status = PAYMENT_EVENTS.get(event_type or "")
    if new_status is None or not reference:
        raise ValidationError("Invalid webhook payload")

    if raw_event is not None and not isinstance(raw_event, str):
        raw_event = to_json(raw_event)

    with storage_errors("confirm_payment"):
        payment = await _find_payment(session_factory, reference)
        if payment is None:
            raise NotFoundError("Payment not found")

        if payment.status != PAYMENT_PENDING:
            return ConfirmationResult(payment.id, payment.booking_id, payment.status, already_processed=True)

        async with session_factory.begin() as session:
            res = await session.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PAYMENT_PENDING)
                .values(status=new_status, raw_event_json=raw_event)
            )
            applied = res.rowcount == 1
            if applied and new_status == PAYMENT_SUCCESS:
                await _mark_booking_paid(session, payment.booking_id)

        if not applied:
            # another delivery of the same event got there first
            current = await _find_payment(session_factory, reference)
            return ConfirmationResult(current.id, current.booking_id, current.status, already_processed=True)

    logger.info("[swiftslot] payment %s -> %s (booking %s)", reference, new_status, payment.booking_id)
    return ConfirmationResult(payment.id, payment.booking_id, new_status)
