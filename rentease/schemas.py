"""Pydantic schemas shared across the services.

Fields are snake_case in Python and camelCase on the wire; both spellings are
accepted on input.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    PlainSerializer,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .models import BookingStatus, CategoryEnum, RoleEnum

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# stored timestamps are naive UTC
UtcDatetime = Annotated[datetime, AfterValidator(_to_naive_utc)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def ok(message: str, **data: Any) -> dict[str, Any]:
    """Build the success envelope returned by every route; data keys are camelCased."""

    body: dict[str, Any] = {"success": True, "message": message}
    if data:
        body["data"] = {to_camel(key): value for key, value in data.items()}
    return body


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(current_page=page, total_pages=math.ceil(total / limit), total_items=total, items_per_page=limit)


# Identity


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class EmailRequest(CamelModel):
    email: EmailStr


class UserCreate(CamelModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8)
    age: int
    valid_id: str
    role: RoleEnum = RoleEnum.RENTOR
    address: Optional[str] = Field(None, max_length=255)

    @field_validator("age")
    @classmethod
    def _adult(cls, value: int) -> int:
        if value < 18:
            raise ValueError("You must be at least 18 years old to register")
        return value

    @field_validator("valid_id")
    @classmethod
    def _valid_id(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 3:
            raise ValueError("A valid government-issued ID is required")
        return value


class UserUpdate(CamelModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, max_length=255)


class PasswordChange(CamelModel):
    current_password: str
    new_password: str = Field(..., min_length=8)


class UserRead(CamelModel):
    id: int
    full_name: str
    email: EmailStr
    role: RoleEnum
    age: int
    address: Optional[str] = None
    is_verified: bool
    is_id_verified: bool
    is_active: bool
    last_activity: Optional[datetime] = None
    created_at: datetime


class UserStats(CamelModel):
    total: int
    active: int
    inactive: int
    verified: int
    unverified: int
    by_role: dict[str, int]


# Listings


class Location(CamelModel):
    barangay: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=100)
    province: str = Field(..., min_length=1, max_length=100)


class PropertyCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    category: CategoryEnum = CategoryEnum.APARTMENT
    price: Decimal = Field(..., ge=0)
    location: Location
    rooms: int = Field(0, ge=0)
    bed: int = Field(0, ge=0)
    bathroom: int = Field(0, ge=0)


class LocationUpdate(CamelModel):
    barangay: Optional[str] = Field(None, min_length=1, max_length=100)
    city: Optional[str] = Field(None, min_length=1, max_length=100)
    province: Optional[str] = Field(None, min_length=1, max_length=100)


class PropertyUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    category: Optional[CategoryEnum] = None
    price: Optional[Decimal] = Field(None, ge=0)
    location: Optional[LocationUpdate] = None
    rooms: Optional[int] = Field(None, ge=0)
    bed: Optional[int] = Field(None, ge=0)
    bathroom: Optional[int] = Field(None, ge=0)
    disabled: Optional[bool] = None


class OwnerSummary(CamelModel):
    id: int
    full_name: str
    email: str


class PropertyRead(CamelModel):
    id: int
    name: str
    description: str
    category: CategoryEnum
    price: Money
    rooms: int
    bed: int
    bathroom: int
    location: Location
    pictures: List[str]
    disabled: bool
    owner_id: int
    created_at: datetime
    updated_at: datetime
    owner: Optional[OwnerSummary] = None


class PropertyStats(CamelModel):
    total: int
    enabled: int
    disabled: int
    recent_properties: int
    by_category: dict[str, int]


# Bookings


class BookingCreate(CamelModel):
    property_id: int
    check_in: UtcDatetime
    check_out: UtcDatetime
    nights: int = Field(..., ge=1)
    amount: Decimal = Field(..., ge=0)
    deduction: Decimal = Field(Decimal("0"), ge=0)


class BookingUpdate(CamelModel):
    check_in: Optional[UtcDatetime] = None
    check_out: Optional[UtcDatetime] = None
    nights: Optional[int] = Field(None, ge=1)
    amount: Optional[Decimal] = Field(None, ge=0)
    deduction: Optional[Decimal] = Field(None, ge=0)
    status: Optional[BookingStatus] = None


class PropertySummary(CamelModel):
    id: int
    name: str
    price: Money
    category: CategoryEnum
    location: Location


class GuestSummary(CamelModel):
    id: int
    full_name: str
    email: str


class BookingRead(CamelModel):
    id: int
    guest_id: int
    property_id: int
    check_in: datetime
    check_out: datetime
    nights: int
    amount: Money
    deduction: Money
    status: BookingStatus
    created_at: datetime

    @computed_field  # type: ignore[misc]
    @property
    def net_amount(self) -> Money:
        return self.amount - self.deduction

    # declared after net_amount: the field name shadows the builtin decorator
    property: Optional[PropertySummary] = None
    guest: Optional[GuestSummary] = None


class BookingStats(CamelModel):
    total_bookings: int
    pending_bookings: int
    approved_bookings: int
    rejected_bookings: int
    cancelled_bookings: int
    total_revenue: Money
    total_deductions: Money
    net_revenue: Money
    total_nights: int


# Ledger and revenue


class Period(CamelModel):
    check_in: datetime
    check_out: datetime


class RentalHistoryCreate(CamelModel):
    property_id: int
    guest_id: int
    check_in: UtcDatetime
    check_out: UtcDatetime
    nights: int = Field(..., ge=1)
    gross: Decimal = Field(..., ge=0)
    net: Decimal = Field(..., ge=0)

    @model_validator(mode="after")
    def _period_order(self) -> "RentalHistoryCreate":
        if self.check_out <= self.check_in:
            raise ValueError("Check-out date must be after check-in date")
        return self


class RentalHistoryRead(CamelModel):
    id: int
    property_id: int
    guest_id: int
    booking_id: Optional[int] = None
    period: Period
    nights: int
    gross: Money
    net: Money
    created_at: datetime


class LedgerStats(CamelModel):
    total_rentals: int
    total_gross_revenue: Money
    total_net_revenue: Money
    total_nights: int
    unique_guests: int
    unique_properties: int


class PropertyRevenue(CamelModel):
    property_id: int
    property_name: Optional[str] = None
    property_revenue: Money


class RevenueReport(CamelModel):
    properties: List[PropertyRevenue]
    total_revenue: Money
    property_count: int
