from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateBookingRequest(_CamelModel):
    # presence is checked by the reservation engine, not here
    vendor_id: int | None = Field(default=None, alias="vendorId")
    start_iso: str | None = Field(default=None, alias="startISO")
    end_iso: str | None = Field(default=None, alias="endISO")
    buyer_id: int = Field(default=1, alias="buyerId")


class BookingResponse(_CamelModel):
    id: int
    vendor_id: int = Field(alias="vendorId")
    start_time_utc: str = Field(alias="startTimeUtc")
    end_time_utc: str = Field(alias="endTimeUtc")
    status: str
    created_at: str = Field(alias="createdAt")


class VendorResponse(BaseModel):
    id: int
    name: str
    timezone: str


class InitializePaymentRequest(_CamelModel):
    booking_id: int | None = Field(default=None, alias="bookingId")


class InitializePaymentResponse(BaseModel):
    ref: str


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    reference: str | None = None


class PaymentWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str | None = None
    data: WebhookData | None = None


class WebhookResponse(_CamelModel):
    message: str
    payment_id: int = Field(alias="paymentId")
    booking_id: int = Field(alias="bookingId")
    status: str


