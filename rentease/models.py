"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

MONEY = Numeric(12, 2)


class RoleEnum(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    RENTOR = "rentor"


class CategoryEnum(str, Enum):
    VEHICLE = "Vehicle"
    APARTMENT = "Apartment"
    EQUIPMENT = "Equipment"


class BookingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    full_name: Mapped[str] = mapped_column(String(100))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.RENTOR, index=True)
    valid_id: Mapped[str] = mapped_column(String(100))
    age: Mapped[int] = mapped_column(Integer)
    address: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_id_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    last_activity: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    properties: Mapped[List["Property"]] = relationship(back_populates="owner")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="guest")


class Property(Base):
    __tablename__ = "properties"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_properties_price"),
        Index("ix_properties_search", "category", "city", "province", "disabled"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[CategoryEnum] = mapped_column(SqlEnum(CategoryEnum), default=CategoryEnum.APARTMENT)
    price: Mapped[Decimal] = mapped_column(MONEY)
    rooms: Mapped[int] = mapped_column(Integer, default=0)
    bed: Mapped[int] = mapped_column(Integer, default=0)
    bathroom: Mapped[int] = mapped_column(Integer, default=0)
    barangay: Mapped[str] = mapped_column(String(100))
    city: Mapped[str] = mapped_column(String(100))
    province: Mapped[str] = mapped_column(String(100))
    pictures: Mapped[list[str]] = mapped_column(JSON, default=list)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner: Mapped[User] = relationship(back_populates="properties")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="property", cascade="all, delete-orphan")

    @property
    def location(self) -> dict[str, str]:
        return {"barangay": self.barangay, "city": self.city, "province": self.province}


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("check_out > check_in", name="ck_bookings_period"),
        CheckConstraint("nights >= 1", name="ck_bookings_nights"),
        CheckConstraint("amount >= 0", name="ck_bookings_amount"),
        CheckConstraint("deduction >= 0", name="ck_bookings_deduction"),
        Index("ix_bookings_guest_status", "guest_id", "status"),
        Index("ix_bookings_property_status", "property_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    guest_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id", ondelete="CASCADE"))
    check_in: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    check_out: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    nights: Mapped[int] = mapped_column(Integer)
    amount: Mapped[Decimal] = mapped_column(MONEY)
    deduction: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"))
    status: Mapped[BookingStatus] = mapped_column(SqlEnum(BookingStatus), default=BookingStatus.PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    guest: Mapped[User] = relationship(back_populates="bookings")
    property: Mapped[Property] = relationship(back_populates="bookings")


class RentalHistory(Base):
    """Financial snapshot of an approved booking.

    References are plain integers rather than foreign keys so an entry outlives
    the booking, listing and guest it was copied from.
    """

    __tablename__ = "rental_history"
    __table_args__ = (
        CheckConstraint("nights >= 1", name="ck_rental_history_nights"),
        CheckConstraint("gross >= 0", name="ck_rental_history_gross"),
        Index("ix_rental_history_property_created", "property_id", "created_at"),
        Index("ix_rental_history_guest_created", "guest_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    property_id: Mapped[int] = mapped_column(Integer, nullable=False)
    guest_id: Mapped[int] = mapped_column(Integer, nullable=False)
    booking_id: Mapped[Optional[int]] = mapped_column(Integer, default=None, index=True)
    period_check_in: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_check_out: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    nights: Mapped[int] = mapped_column(Integer)
    gross: Mapped[Decimal] = mapped_column(MONEY)
    net: Mapped[Decimal] = mapped_column(MONEY)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    @property
    def period(self) -> dict[str, datetime]:
        return {"check_in": self.period_check_in, "check_out": self.period_check_out}
