import asyncio
import json
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from swiftslot import reservations
from swiftslot.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from swiftslot.idempotency import BOOKINGS_SCOPE
from swiftslot.models import Booking, BookingSlot, IdempotencyKey
from swiftslot.reservations import available_slots, get_booking, reserve
from tests.conftest import add_vendor

UTC = timezone.utc

# 11:00 Lagos, far enough ahead that lead time never applies
START = "2099-09-25T10:00:00.000Z"
END = "2099-09-25T10:30:00.000Z"


async def count(sessions, model) -> int:
    async with sessions() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def test_reserve_creates_pending_booking(sessions, vendor_id):
    result = await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)

    assert result.replayed is False
    payload = result.payload()
    assert payload["vendorId"] == vendor_id
    assert payload["startTimeUtc"] == START
    assert payload["endTimeUtc"] == END
    assert payload["status"] == "pending"
    assert set(payload) == {"id", "vendorId", "startTimeUtc", "endTimeUtc", "status", "createdAt"}

    assert await count(sessions, Booking) == 1
    assert await count(sessions, BookingSlot) == 1
    assert await count(sessions, IdempotencyKey) == 1
    assert await get_booking(sessions, payload["id"]) == payload


async def test_replay_returns_cached_body_without_writing(sessions, vendor_id):
    first = await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)
    second = await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)

    assert second.replayed is True
    assert second.body == first.body
    assert await count(sessions, Booking) == 1
    assert await count(sessions, BookingSlot) == 1


async def test_replay_ignores_lead_time_and_vendor_checks(sessions, vendor_id):
    first = await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)
    # same key, even with a payload that would now fail validation downstream
    later = datetime(2099, 9, 25, 9, 30, tzinfo=UTC)
    second = await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END, now=later)

    assert second.body == first.body


async def test_concurrent_replays_yield_one_booking(sessions, vendor_id):
    results = await asyncio.gather(
        *[reserve(sessions, "same-key", BOOKINGS_SCOPE, vendor_id, START, END) for _ in range(5)]
    )

    assert len({r.body for r in results}) == 1
    assert sum(1 for r in results if not r.replayed) == 1
    assert await count(sessions, Booking) == 1
    assert await count(sessions, BookingSlot) == 1


async def test_concurrent_distinct_keys_one_winner(sessions, vendor_id):
    outcomes = await asyncio.gather(
        *[reserve(sessions, f"key-{i}", BOOKINGS_SCOPE, vendor_id, START, END) for i in range(6)],
        return_exceptions=True,
    )

    wins = [o for o in outcomes if not isinstance(o, Exception)]
    conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
    assert len(wins) == 1
    assert len(conflicts) == 5
    assert await count(sessions, Booking) == 1
    assert await count(sessions, BookingSlot) == 1
    assert await count(sessions, IdempotencyKey) == 1


async def test_conflict_rolls_back_booking_row(sessions, vendor_id):
    await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)

    with pytest.raises(ConflictError) as exc:
        await reserve(sessions, "key-2", BOOKINGS_SCOPE, vendor_id, START, END)

    assert "already booked" in exc.value.message
    assert exc.value.to_dict()["kind"] == "conflict"
    assert await count(sessions, Booking) == 1
    # the losing key is free to be used for another slot
    other = await reserve(
        sessions, "key-2", BOOKINGS_SCOPE, vendor_id, "2099-09-25T10:30:00.000Z", "2099-09-25T11:00:00.000Z"
    )
    assert other.replayed is False


async def test_same_slot_for_different_vendors(sessions, vendor_id):
    other_vendor = await add_vendor(sessions, name="Arike Preorder")
    await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)
    await reserve(sessions, "key-2", BOOKINGS_SCOPE, other_vendor, START, END)

    assert await count(sessions, BookingSlot) == 2


async def test_failure_after_booking_insert_leaves_nothing(sessions, vendor_id, monkeypatch):
    async def broken_store(session, key, scope, body):
        raise OperationalError("INSERT INTO idempotency_keys", {}, Exception("disk I/O error"))

    monkeypatch.setattr(reservations.idempotency, "store", broken_store)

    with pytest.raises(PersistenceError) as exc:
        await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)

    assert exc.value.to_dict() == {"kind": "persistence", "error": "Internal server error"}
    assert await count(sessions, Booking) == 0
    assert await count(sessions, BookingSlot) == 0
    assert await count(sessions, IdempotencyKey) == 0


@pytest.mark.parametrize("key", [None, "", "   "])
async def test_missing_idempotency_key(sessions, vendor_id, key):
    with pytest.raises(ValidationError, match="missing idempotency key"):
        await reserve(sessions, key, BOOKINGS_SCOPE, vendor_id, START, END)


@pytest.mark.parametrize("vendor,start,end", [(None, START, END), (1, None, END), (1, START, None)])
async def test_missing_required_fields(sessions, vendor_id, vendor, start, end):
    with pytest.raises(ValidationError, match="missing required fields"):
        await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor, start, end)


async def test_end_must_follow_start(sessions, vendor_id):
    with pytest.raises(ValidationError):
        await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, END, START)
    assert await count(sessions, Booking) == 0


async def test_unknown_vendor(sessions, vendor_id):
    with pytest.raises(ValidationError, match="unknown vendor"):
        await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id + 100, START, END)


# Lagos is UTC+1; 08:00Z is 09:00 local
NOW = datetime(2030, 3, 10, 8, 0, tzinfo=UTC)


async def test_same_day_start_exactly_at_lead_time_is_rejected(sessions, vendor_id):
    start = NOW + timedelta(hours=2)

    with pytest.raises(ValidationError) as exc:
        await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, start, start + timedelta(minutes=30), now=NOW)

    assert "insufficient lead time" in exc.value.message
    assert exc.value.details["minimumBookingTime"] == "2030-03-10T11:00:00.000+01:00"
    assert exc.value.details["currentTime"] == "2030-03-10T09:00:00.000+01:00"
    assert await count(sessions, Booking) == 0


async def test_same_day_start_one_ms_past_lead_time_is_accepted(sessions, vendor_id):
    start = NOW + timedelta(hours=2, milliseconds=1)

    result = await reserve(
        sessions, "key-1", BOOKINGS_SCOPE, vendor_id, start, start + timedelta(minutes=30), now=NOW
    )

    assert result.payload()["startTimeUtc"] == "2030-03-10T10:00:00.001Z"


async def test_future_local_date_skips_lead_time(sessions, vendor_id):
    # 23:30 Lagos; 01:00 Lagos next day is only 90 minutes away
    now = datetime(2030, 3, 10, 22, 30, tzinfo=UTC)
    start = datetime(2030, 3, 11, 0, 0, tzinfo=UTC)

    result = await reserve(
        sessions, "key-1", BOOKINGS_SCOPE, vendor_id, start, start + timedelta(minutes=30), now=now
    )
    assert result.replayed is False


async def test_same_utc_day_but_next_local_day(sessions, vendor_id):
    # 23:30Z is 00:30 local on the 11th, i.e. tomorrow relative to 09:00 local on the 10th
    start = datetime(2030, 3, 10, 23, 30, tzinfo=UTC)
    result = await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, start, start + timedelta(minutes=30), now=NOW)
    assert result.replayed is False


async def test_past_local_date_is_rejected(sessions, vendor_id):
    start = NOW - timedelta(days=1)
    with pytest.raises(ValidationError, match="start time is in the past") as exc:
        await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, start, start + timedelta(minutes=30), now=NOW)

    assert exc.value.details == {"currentTime": "2030-03-10T09:00:00.000+01:00"}
    assert await count(sessions, Booking) == 0


async def test_start_beyond_local_calendar_is_rejected(sessions, vendor_id):
    # 23:00Z on the last representable day is already next year in Lagos
    start = datetime(9999, 12, 31, 23, 0, tzinfo=UTC)
    with pytest.raises(ValidationError, match="out of range"):
        await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, start, start + timedelta(minutes=30), now=NOW)
    assert await count(sessions, Booking) == 0


async def test_availability_excludes_reserved_slots(sessions, vendor_id):
    day = date(2099, 9, 25)
    before = await available_slots(sessions, vendor_id, day)
    assert len(before) == 16

    await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)
    after = await available_slots(sessions, vendor_id, day)

    assert len(after) == 15
    assert datetime(2099, 9, 25, 10, 0, tzinfo=UTC) not in after
    assert after == [s for s in before if s != datetime(2099, 9, 25, 10, 0, tzinfo=UTC)]


async def test_off_grid_booking_does_not_hide_grid_slot(sessions, vendor_id):
    await reserve(
        sessions, "key-1", BOOKINGS_SCOPE, vendor_id, "2099-09-25T10:00:00.001Z", "2099-09-25T10:30:00.000Z"
    )
    slots = await available_slots(sessions, vendor_id, date(2099, 9, 25))
    assert len(slots) == 16


async def test_availability_unknown_vendor(sessions, vendor_id):
    with pytest.raises(NotFoundError):
        await available_slots(sessions, vendor_id + 100, date(2099, 9, 25))


async def test_get_booking_not_found(sessions, vendor_id):
    with pytest.raises(NotFoundError):
        await get_booking(sessions, 404)


async def test_cached_body_is_canonical_json(sessions, vendor_id):
    result = await reserve(sessions, "key-1", BOOKINGS_SCOPE, vendor_id, START, END)
    assert result.body == json.dumps(result.payload(), separators=(",", ":"))
