from datetime import date
from typing import Any, Dict, List, Literal, Optional, Annotated
from uuid import UUID
from pydantic import (
    BaseModel,
    EmailStr,
    Field,
    StringConstraints,
    ConfigDict,
    model_validator,
)

DeliveryStatus = Literal["pending", "assigned", "picked_up", "in_transit", "delivered", "failed", "cancelled", "delayed"]
DateString = Annotated[str, StringConstraints(pattern=r"^\d{4}-\d{2}-\d{2}$")]


class LoginPayload(BaseModel):
    email: EmailStr
    password: Annotated[str, StringConstraints(min_length=8, max_length=72)]


class LoginSuccessResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int
    expires_at: int


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class DeliveryCreatePayload(BaseModel):
    order_id: Optional[UUID] = None
    driver_id: Optional[UUID] = None
    delivery_type: Literal["own_driver", "external_provider"] = "own_driver"
    provider_name: Optional[str] = Field(default=None, max_length=200)
    provider_tracking_id: Optional[str] = Field(default=None, max_length=200)
    pickup_address: Optional[str] = Field(default=None, max_length=1000)
    delivery_address: str = Field(..., min_length=1, max_length=1000)
    customer_name: Optional[str] = Field(default=None, max_length=200)
    customer_phone: Optional[str] = Field(default=None, max_length=50)
    estimated_delivery_time: Optional[str] = None
    delivery_fee: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)
    scheduled_date: Optional[DateString] = None
    scheduled_time_slot: Optional[str] = Field(default=None, max_length=20)


class DeliveryUpdatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    driver_id: Optional[UUID] = None
    status: Optional[DeliveryStatus] = None
    provider_name: Optional[str] = Field(default=None, max_length=200)
    provider_tracking_id: Optional[str] = Field(default=None, max_length=200)
    delivery_address: Optional[str] = Field(default=None, max_length=500)
    customer_name: Optional[str] = Field(default=None, max_length=200)
    customer_phone: Optional[str] = Field(default=None, max_length=50)
    estimated_delivery_time: Optional[str] = None
    actual_delivery_time: Optional[str] = None
    delivery_fee: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)
    failure_reason: Optional[str] = Field(default=None, max_length=1000)
    proof_photo_url: Optional[str] = Field(default=None, max_length=2000)
    scheduled_date: Optional[DateString] = None
    scheduled_time_slot: Optional[str] = Field(default=None, max_length=20)

    @model_validator(mode="after")
    def _require_a_field(self) -> "DeliveryUpdatePayload":
        if not self.model_fields_set:
            raise ValueError("No valid fields to update")
        return self


class FeeQuoteRequest(BaseModel):
    address: str = Field(..., min_length=3, max_length=1000)
    subtotal: Optional[float] = Field(default=None, ge=0)


class AssignDeliveryPayload(BaseModel):
    delivery_id: UUID


class DriverStatusPayload(BaseModel):
    status: Literal["picked_up", "in_transit", "delivered", "failed", "delayed"]
    failure_reason: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=2000)
    proof_photo_url: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[GeoPoint] = None


class ProviderWebhookPayload(BaseModel):
    """Provider callbacks are validated by hand so missing fields map to 400, not 422."""

    model_config = ConfigDict(extra="ignore")

    store_id: Optional[str] = None
    provider_tracking_id: Optional[str] = None
    status: Optional[str] = None
    failure_reason: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[Dict[str, Any]] = None
    proof_photo_url: Optional[str] = None


class RatingPayload(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)
    customer_name: Optional[str] = Field(default=None, max_length=200)


class PayoutGeneratePayload(BaseModel):
    period_start: DateString
    period_end: DateString
    driver_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _check_period(self) -> "PayoutGeneratePayload":
        if date.fromisoformat(self.period_end) < date.fromisoformat(self.period_start):
            raise ValueError("period_end must be on or after period_start")
        return self


class PayoutUpdatePayload(BaseModel):
    status: Literal["approved", "paid", "cancelled"]
    notes: Optional[str] = Field(default=None, max_length=1000)


class OrderItemPayload(BaseModel):
    product_id: UUID
    variant_id: Optional[UUID] = None
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)


class OrderCreatePayload(BaseModel):
    store_id: UUID
    customer_id: Optional[UUID] = None
    order_type: Literal["delivery", "pickup", "dine_in"] = "delivery"
    items: List[OrderItemPayload] = Field(..., min_length=1)
    shipping_zone: Optional[str] = Field(default=None, max_length=200)
    shipping_address: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=2000)


class WidgetChatRequest(BaseModel):
    store_id: UUID
    message: str = Field(..., min_length=1, max_length=2000)
    conversation_id: Optional[UUID] = None
    customer_name: Optional[str] = Field(default=None, max_length=200)


class WidgetChatResponse(BaseModel):
    reply: str
    intent: str
    confidence: float
    conversation_id: str
    escalated: bool = False
