from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import async_sessionmaker

from .errors import BookingError
from .idempotency import BOOKINGS_SCOPE
from .models import PAYMENT_SUCCESS
from .payments import confirm_payment, initialize_payment
from .publisher import RabbitPublisher
from .reservations import available_slots, get_booking, list_vendors, reserve
from .schemas import (
    BookingResponse,
    CreateBookingRequest,
    InitializePaymentRequest,
    InitializePaymentResponse,
    PaymentWebhook,
    VendorResponse,
    WebhookResponse,
)
from .timeslots import isoformat_utc, parse_date

router = APIRouter(prefix="/api")


def get_session_factory(request: Request) -> async_sessionmaker:
    return request.app.state.session_factory


def get_publisher(request: Request) -> RabbitPublisher:
    return request.app.state.publisher


def http_error(err: BookingError) -> HTTPException:
    return HTTPException(status_code=err.status_code, detail=err.to_dict())


@router.get("/vendors", response_model=List[VendorResponse])
async def get_vendors(sessions: async_sessionmaker = Depends(get_session_factory)):
    try:
        return await list_vendors(sessions)
    except BookingError as e:
        raise http_error(e)


@router.get("/vendors/{vendor_id}/availability", response_model=List[str])
async def get_availability(
    vendor_id: int,
    date: str | None = None,
    sessions: async_sessionmaker = Depends(get_session_factory),
):
    try:
        day = parse_date(date)
        slots = await available_slots(sessions, vendor_id, day)
    except BookingError as e:
        raise http_error(e)
    return [isoformat_utc(s) for s in slots]


@router.post("/bookings", status_code=201, response_model=BookingResponse)
async def create_booking(
    data: CreateBookingRequest,
    idempotency_key: str | None = Header(default=None),
    sessions: async_sessionmaker = Depends(get_session_factory),
    publisher: RabbitPublisher = Depends(get_publisher),
):
    try:
        result = await reserve(
            sessions,
            idempotency_key,
            BOOKINGS_SCOPE,
            data.vendor_id,
            data.start_iso,
            data.end_iso,
            buyer_id=data.buyer_id,
        )
    except BookingError as e:
        raise http_error(e)

    if not result.replayed:
        await publisher.publish_event("booking.created", result.payload())

    # cached bytes go back untouched so replays are identical
    return Response(content=result.body, status_code=201, media_type="application/json")


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
async def read_booking(booking_id: int, sessions: async_sessionmaker = Depends(get_session_factory)):
    try:
        return await get_booking(sessions, booking_id)
    except BookingError as e:
        raise http_error(e)


@router.post("/payments/initialize", response_model=InitializePaymentResponse)
async def init_payment(
    data: InitializePaymentRequest,
    sessions: async_sessionmaker = Depends(get_session_factory),
):
    if data.booking_id is None:
        raise HTTPException(status_code=400, detail={"kind": "validation", "error": "bookingId is required"})
    try:
        ref = await initialize_payment(sessions, data.booking_id)
    except BookingError as e:
        raise http_error(e)
    return InitializePaymentResponse(ref=ref)


@router.post("/payments/webhook", response_model=WebhookResponse)
async def payment_webhook(
    event: PaymentWebhook,
    request: Request,
    sessions: async_sessionmaker = Depends(get_session_factory),
    publisher: RabbitPublisher = Depends(get_publisher),
):
    reference = event.data.reference if event.data else None
    try:
        result = await confirm_payment(
            sessions,
            event.event,
            reference,
            raw_event=(await request.body()).decode("utf-8"),
        )
    except BookingError as e:
        raise http_error(e)

    if result.already_processed:
        message = "Payment already processed"
    elif result.status == PAYMENT_SUCCESS:
        message = "Payment processed successfully"
        await publisher.publish_event(
            "payment.succeeded",
            {"paymentId": result.payment_id, "bookingId": result.booking_id, "ref": reference},
        )
    else:
        message = "Payment failure recorded"
        await publisher.publish_event(
            "payment.failed",
            {"paymentId": result.payment_id, "bookingId": result.booking_id, "ref": reference},
        )

    return {
        "message": message,
        "paymentId": result.payment_id,
        "bookingId": result.booking_id,
        "status": result.status,
    }
