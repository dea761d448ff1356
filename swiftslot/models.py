from sqlalchemy import Column, Integer, String, Text, ForeignKey, UniqueConstraint

from .config import APP_TIMEZONE
from .db import Base, UTCDateTime

BOOKING_PENDING = "pending"
BOOKING_PAID = "paid"

PAYMENT_PENDING = "pending"
PAYMENT_SUCCESS = "success"
PAYMENT_FAILED = "failed"


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    timezone = Column(String, nullable=False, default=APP_TIMEZONE)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    buyer_id = Column(Integer, nullable=False, default=1)

    start_time_utc = Column(UTCDateTime(), nullable=False)
    end_time_utc = Column(UTCDateTime(), nullable=False)

    status = Column(String, nullable=False, default=BOOKING_PENDING)  # pending/paid
    created_at = Column(UTCDateTime(), nullable=False)


class BookingSlot(Base):
    __tablename__ = "booking_slots"
    __table_args__ = (
        # the only guard against double booking
        UniqueConstraint("vendor_id", "slot_start_utc", name="unique_vendor_slot"),
    )

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    vendor_id = Column(Integer, nullable=False)
    slot_start_utc = Column(UTCDateTime(), nullable=False)


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("key", "scope", name="unique_idempotency_key_scope"),
    )

    id = Column(Integer, primary_key=True)
    key = Column(String, nullable=False)
    scope = Column(String, nullable=False)
    response_body = Column(Text, nullable=False)
    created_at = Column(UTCDateTime(), nullable=False)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    ref = Column(String, unique=True, nullable=False)
    status = Column(String, nullable=False, default=PAYMENT_PENDING)  # pending/success/failed
    raw_event_json = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False)
