"""Unit tests for schema validation and wire format."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from rentease.models import BookingStatus, RoleEnum
from rentease.schemas import (
    BookingCreate,
    BookingRead,
    Pagination,
    RentalHistoryCreate,
    UserCreate,
    ok,
)


class TestUserSchemas:
    """Test user-related schemas."""

    def test_user_create_accepts_camel_and_snake(self):
        camel = UserCreate.model_validate(
            {"fullName": "Ana", "email": "ana@example.com", "password": "Passw0rd!", "age": 18, "validId": "ABC"}
        )
        snake = UserCreate(full_name="Ana", email="ana@example.com", password="Passw0rd!", age=18, valid_id="ABC")
        assert camel == snake
        assert camel.role == RoleEnum.RENTOR

    def test_user_must_be_adult(self):
        with pytest.raises(ValidationError):
            UserCreate(full_name="Kid", email="kid@example.com", password="Passw0rd!", age=17, valid_id="ABC")

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            UserCreate(full_name="X", email="invalid-email", password="Passw0rd!", age=30, valid_id="ABC")


class TestBookingSchemas:
    """Test booking-related schemas."""

    def test_aware_datetimes_become_naive_utc(self):
        manila = timezone(timedelta(hours=8))
        booking = BookingCreate(
            property_id=1,
            check_in=datetime(2030, 1, 1, 22, 0, tzinfo=manila),
            check_out=datetime(2030, 1, 2, 22, 0, tzinfo=manila),
            nights=1,
            amount=Decimal("100"),
        )
        assert booking.check_in == datetime(2030, 1, 1, 14, 0)
        assert booking.check_in.tzinfo is None
        assert booking.deduction == Decimal("0")

    def test_nights_and_amount_bounds(self):
        with pytest.raises(ValidationError):
            BookingCreate(property_id=1, check_in=datetime(2030, 1, 1), check_out=datetime(2030, 1, 2), nights=0, amount=1)
        with pytest.raises(ValidationError):
            BookingCreate(property_id=1, check_in=datetime(2030, 1, 1), check_out=datetime(2030, 1, 2), nights=1, amount=-1)

    def test_booking_read_serializes_camel_case_and_net(self):
        booking = BookingRead(
            id=1,
            guest_id=2,
            property_id=3,
            check_in=datetime(2030, 1, 1),
            check_out=datetime(2030, 1, 3),
            nights=2,
            amount=Decimal("200.00"),
            deduction=Decimal("20.00"),
            status=BookingStatus.APPROVED,
            created_at=datetime(2029, 12, 1),
        )
        data = booking.model_dump(mode="json", by_alias=True)
        assert data["netAmount"] == 180.0
        assert data["amount"] == 200.0
        assert data["guestId"] == 2
        assert data["property"] is None


class TestLedgerSchemas:
    def test_period_order_enforced(self):
        with pytest.raises(ValidationError):
            RentalHistoryCreate(
                property_id=1,
                guest_id=1,
                check_in=datetime(2030, 1, 2),
                check_out=datetime(2030, 1, 1),
                nights=1,
                gross=10,
                net=10,
            )


class TestEnvelope:
    def test_ok_camelizes_data_keys(self):
        body = ok("Done", rental_history=None, property_count=2)
        assert body == {"success": True, "message": "Done", "data": {"rentalHistory": None, "propertyCount": 2}}

    def test_ok_without_data(self):
        assert ok("Done") == {"success": True, "message": "Done"}

    def test_pagination_rounds_pages_up(self):
        page = Pagination.build(page=2, limit=10, total=21)
        assert page.model_dump(by_alias=True) == {
            "currentPage": 2,
            "totalPages": 3,
            "totalItems": 21,
            "itemsPerPage": 10,
        }
        assert Pagination.build(page=1, limit=10, total=0).total_pages == 0
