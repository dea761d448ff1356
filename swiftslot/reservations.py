"""
Booking reservation engine.

Public API:
  reserve(session_factory, client_key, scope, vendor_id, start, end, ...)
  available_slots(session_factory, vendor_id, day)
  get_booking(session_factory, booking_id)
  list_vendors(session_factory)

Double booking is prevented solely by the `unique_vendor_slot` constraint on
booking_slots: the booking, its slot row and the idempotency record are
written in one transaction, and whichever competitor commits first wins.
"""
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from . import idempotency
from .config import SAME_DAY_LEAD_HOURS
from .db import storage_errors
from .errors import ConflictError, NotFoundError, ValidationError
from .events import to_json
from .models import Booking, BookingSlot, Vendor, BOOKING_PENDING
from .timeslots import (
    generate_slots,
    isoformat_local,
    isoformat_utc,
    parse_instant,
    to_local,
    truncate_ms,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationResult:
    body: str  # canonical JSON, identical for every replay of the same key
    replayed: bool = False

    def payload(self) -> dict:
        return json.loads(self.body)


def booking_payload(booking: Booking) -> dict:
    return {
        "id": booking.id,
        "vendorId": booking.vendor_id,
        "startTimeUtc": isoformat_utc(booking.start_time_utc),
        "endTimeUtc": isoformat_utc(booking.end_time_utc),
        "status": booking.status,
        "createdAt": isoformat_utc(booking.created_at),
    }


def check_lead_time(start: datetime, tz_name: str, now: datetime, lead_hours: int = SAME_DAY_LEAD_HOURS):
    """
    Same-day bookings must start strictly after now + lead_hours.
    Later local dates are always fine; earlier ones never are.
    """
    start_local = to_local(start, tz_name)
    now_local = to_local(now, tz_name)
    minimum = now + timedelta(hours=lead_hours)

    if start_local.date() > now_local.date():
        return
    if start_local.date() < now_local.date():
        raise ValidationError("start time is in the past", currentTime=isoformat_local(now, tz_name))
    if start_local.date() == now_local.date() and start > minimum:
        return

    raise ValidationError(
        "insufficient lead time: bookings for today must start at least "
        f"{lead_hours} hours from now ({tz_name} time)",
        currentTime=isoformat_local(now, tz_name),
        minimumBookingTime=isoformat_local(minimum, tz_name),
    )


async def _replay(session_factory: async_sessionmaker, client_key: str, scope: str):
    async with session_factory() as session:
        cached = await idempotency.lookup(session, client_key, scope)
    if cached is None:
        return None
    return ReservationResult(body=cached, replayed=True)


async def reserve(
    session_factory: async_sessionmaker,
    client_key: str | None,
    scope: str,
    vendor_id: int | None,
    start,
    end,
    buyer_id: int = 1,
    now: datetime | None = None,
    lead_hours: int = SAME_DAY_LEAD_HOURS,
) -> ReservationResult:
    if not client_key or not client_key.strip():
        raise ValidationError("missing idempotency key")
    if vendor_id is None or start is None or end is None:
        raise ValidationError("missing required fields: vendorId, startISO and endISO are required")

    start_utc = parse_instant(start)
    end_utc = parse_instant(end)
    if end_utc <= start_utc:
        raise ValidationError("endISO must be after startISO")

    now = truncate_ms(now or datetime.now(timezone.utc))

    with storage_errors("reserve"):
        replay = await _replay(session_factory, client_key, scope)
        if replay is not None:
            logger.info("[swiftslot] replaying %s:%s", scope, client_key)
            return replay

        async with session_factory() as session:
            vendor = await session.get(Vendor, vendor_id)
            tz_name = vendor.timezone if vendor else None
        if tz_name is None:
            raise ValidationError("unknown vendor", vendorId=vendor_id)

        check_lead_time(start_utc, tz_name, now, lead_hours)

        try:
            async with session_factory.begin() as session:
                booking = Booking(
                    vendor_id=vendor_id,
                    buyer_id=buyer_id,
                    start_time_utc=start_utc,
                    end_time_utc=end_utc,
                    status=BOOKING_PENDING,
                    created_at=now,
                )
                session.add(booking)
                await session.flush()

                session.add(
                    BookingSlot(
                        booking_id=booking.id,
                        vendor_id=vendor_id,
                        slot_start_utc=start_utc,
                    )
                )
                try:
                    await session.flush()
                except IntegrityError:
                    # leaving the block rolls back the booking row too
                    raise ConflictError(
                        "This time slot is already booked. Please choose another time.",
                        conflictDetails="Another booking exists for this vendor at this time",
                    )

                body = to_json(booking_payload(booking))
                await idempotency.store(session, client_key, scope, body)
        except ConflictError:
            # a concurrent request with the same key may have won the slot
            replay = await _replay(session_factory, client_key, scope)
            if replay is not None:
                return replay
            logger.info("[swiftslot] slot conflict vendor=%s start=%s", vendor_id, isoformat_utc(start_utc))
            raise

    logger.info("[swiftslot] booking %s created vendor=%s start=%s", booking.id, vendor_id, isoformat_utc(start_utc))
    return ReservationResult(body=body)


async def available_slots(session_factory: async_sessionmaker, vendor_id: int, day: date) -> list[datetime]:
    with storage_errors("available_slots"):
        async with session_factory() as session:
            vendor = await session.get(Vendor, vendor_id)
            if vendor is None:
                raise NotFoundError("Vendor not found")

            slots = generate_slots(day, vendor.timezone)
            res = await session.execute(
                select(BookingSlot.slot_start_utc).where(
                    BookingSlot.vendor_id == vendor_id,
                    BookingSlot.slot_start_utc.in_(slots),
                )
            )
            booked = set(res.scalars().all())

    return [s for s in slots if s not in booked]


async def get_booking(session_factory: async_sessionmaker, booking_id: int) -> dict:
    with storage_errors("get_booking"):
        async with session_factory() as session:
            booking = await session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking_payload(booking)


async def list_vendors(session_factory: async_sessionmaker) -> list[dict]:
    with storage_errors("list_vendors"):
        async with session_factory() as session:
            res = await session.execute(select(Vendor).order_by(Vendor.id))
            vendors = res.scalars().all()
    return [{"id": v.id, "name": v.name, "timezone": v.timezone} for v in vendors]
