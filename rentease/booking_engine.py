"""Booking lifecycle: validation, role-gated updates and the approval trigger.

A booking moves between ``pending``, ``approved``, ``rejected`` and
``cancelled``. Every transition *into* ``approved`` produces one
rental-history entry. The decision is made by the pure
:func:`apply_status_change`; persistence guards it with a conditional update
on the stored status so concurrent approvals of the same booking record a
single entry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .errors import AuthorizationError, InternalError, NotFoundError, ValidationError
from .ledger import LedgerSnapshot
from .models import Booking, BookingStatus, Property, RentalHistory, User
from .pagination import apply_sort, paginate
from .permissions import Operation, is_allowed
from .schemas import BookingCreate, BookingStats, BookingUpdate, Pagination

logger = logging.getLogger(__name__)

BOOKING_SORT_COLUMNS = {
    "id": Booking.id,
    "created_at": Booking.created_at,
    "check_in": Booking.check_in,
    "check_out": Booking.check_out,
    "amount": Booking.amount,
    "nights": Booking.nights,
    "status": Booking.status,
}

GUEST_MUTABLE_FIELDS = frozenset({"check_in", "check_out", "status"})

_DISPLAY_JOINS = (joinedload(Booking.property), joinedload(Booking.guest))


@dataclass(frozen=True)
class BookingTerms:
    property_id: int
    guest_id: int
    check_in: datetime
    check_out: datetime
    nights: int
    amount: Decimal
    deduction: Decimal
    status: BookingStatus

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingTerms":
        return cls(
            property_id=booking.property_id,
            guest_id=booking.guest_id,
            check_in=booking.check_in,
            check_out=booking.check_out,
            nights=booking.nights,
            amount=Decimal(booking.amount),
            deduction=Decimal(booking.deduction or 0),
            status=booking.status,
        )

    @property
    def net(self) -> Decimal:
        return self.amount - self.deduction


def apply_status_change(
    terms: BookingTerms, new_status: BookingStatus
) -> Tuple[BookingTerms, Optional[LedgerSnapshot]]:
    """Return the terms after the change and, on a move into approved, the ledger snapshot."""

    updated = replace(terms, status=new_status)
    if new_status is not BookingStatus.APPROVED or terms.status is BookingStatus.APPROVED:
        return updated, None
    return updated, snapshot_terms(updated)


def snapshot_terms(terms: BookingTerms) -> LedgerSnapshot:
    return LedgerSnapshot(
        property_id=terms.property_id,
        guest_id=terms.guest_id,
        check_in=terms.check_in,
        check_out=terms.check_out,
        nights=terms.nights,
        gross=terms.amount,
        net=terms.net,
    )


def validate_period(check_in: datetime, check_out: datetime) -> None:
    if check_out <= check_in:
        raise ValidationError("Check-out date must be after check-in date")


def authorize_update(actor: User, booking: Booking, changes: Dict[str, Any]) -> None:
    """Privileged roles may change anything; the guest only dates and cancellation."""

    if is_allowed(actor.role, Operation.BOOKING_UPDATE_ANY):
        return
    if booking.guest_id != actor.id:
        raise AuthorizationError("Not authorized to update this booking")
    restricted = sorted(set(changes) - GUEST_MUTABLE_FIELDS)
    if restricted:
        raise AuthorizationError(f"Guests cannot change: {', '.join(restricted)}")
    new_status = changes.get("status")
    if new_status is not None and new_status is not BookingStatus.CANCELLED:
        raise AuthorizationError("Guests can only change a booking's status to cancelled")


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to %s", action)
        raise InternalError(f"Failed to {action}: {exc}") from exc


def load_booking(db: Session, booking_id: int) -> Booking:
    booking = db.query(Booking).options(*_DISPLAY_JOINS).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def create_booking(db: Session, guest: User, data: BookingCreate) -> Booking:
    validate_period(data.check_in, data.check_out)
    listing = db.get(Property, data.property_id)
    if not listing or listing.disabled:
        raise NotFoundError("Property not found")

    booking = Booking(
        guest_id=guest.id,
        property_id=listing.id,
        check_in=data.check_in,
        check_out=data.check_out,
        nights=data.nights,
        amount=data.amount,
        deduction=data.deduction,
        status=BookingStatus.PENDING,
    )
    db.add(booking)
    _commit(db, "create booking")
    logger.info("Booking %s created by guest %s for property %s", booking.id, guest.id, listing.id)
    return load_booking(db, booking.id)


def list_bookings(
    db: Session,
    *,
    page: int,
    limit: int,
    status: Optional[BookingStatus] = None,
    guest_id: Optional[int] = None,
    property_id: Optional[int] = None,
    sort_by: str = "-created_at",
) -> Tuple[list[Booking], Pagination]:
    query = db.query(Booking)
    if status is not None:
        query = query.filter(Booking.status == status)
    if guest_id is not None:
        query = query.filter(Booking.guest_id == guest_id)
    if property_id is not None:
        query = query.filter(Booking.property_id == property_id)
    query = apply_sort(query, sort_by, BOOKING_SORT_COLUMNS)
    return paginate(query, page, limit, *_DISPLAY_JOINS)


def get_booking(db: Session, booking_id: int, viewer: User) -> Booking:
    booking = load_booking(db, booking_id)
    if (
        booking.guest_id != viewer.id
        and booking.property.owner_id != viewer.id
        and not is_allowed(viewer.role, Operation.BOOKING_READ_ANY)
    ):
        raise AuthorizationError("Not authorized to view this booking")
    return booking


def update_booking(
    db: Session, booking_id: int, data: BookingUpdate, actor: User
) -> Tuple[Booking, Optional[RentalHistory]]:
    """Apply an update and return the booking plus the ledger entry it created, if any."""

    booking = load_booking(db, booking_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    authorize_update(actor, booking, changes)
    if not changes:
        return booking, None

    new_status: Optional[BookingStatus] = changes.pop("status", None)
    terms = replace(BookingTerms.from_booking(booking), **changes)
    if "check_in" in changes or "check_out" in changes:
        validate_period(terms.check_in, terms.check_out)

    snapshot = None
    if new_status is not None:
        terms, snapshot = apply_status_change(terms, new_status)

    entry = _persist_update(db, booking, changes, new_status, snapshot)
    db.expire(booking)
    return load_booking(db, booking_id), entry


def _persist_update(
    db: Session,
    booking: Booking,
    changes: Dict[str, Any],
    new_status: Optional[BookingStatus],
    snapshot: Optional[LedgerSnapshot],
) -> Optional[RentalHistory]:
    stmt = update(Booking).where(Booking.id == booking.id).execution_options(synchronize_session=False)
    entry = None
    try:
        if snapshot is not None:
            # only the request that actually flips the stored status records the entry
            result = db.execute(
                stmt.where(Booking.status != BookingStatus.APPROVED).values(**changes, status=BookingStatus.APPROVED)
            )
            if result.rowcount == 1:
                # re-read inside the transaction: other fields may have changed since the booking was loaded
                stored = db.execute(
                    select(Booking).where(Booking.id == booking.id).execution_options(populate_existing=True)
                ).scalar_one()
                entry = snapshot_terms(BookingTerms.from_booking(stored)).to_entry(booking.id)
                db.add(entry)
            else:
                logger.info("Booking %s was already approved; no rental history recorded", booking.id)
                if changes:
                    db.execute(stmt.values(**changes))
        else:
            values = dict(changes)
            if new_status is not None:
                values["status"] = new_status
            db.execute(stmt.values(**values))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to update booking %s", booking.id)
        raise InternalError(f"Failed to update booking: {exc}") from exc

    if entry is not None:
        logger.info("Booking %s approved; rental history %s recorded (net %s)", booking.id, entry.id, entry.net)
    return entry


def delete_booking(db: Session, booking_id: int) -> None:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    db.delete(booking)
    _commit(db, "delete booking")
    logger.info("Booking %s deleted", booking_id)


def booking_stats(db: Session) -> BookingStats:
    counts = {status: 0 for status in BookingStatus}
    for status, count in db.query(Booking.status, func.count(Booking.id)).group_by(Booking.status).all():
        counts[status] = count

    revenue, deductions, nights = (
        db.query(
            func.coalesce(func.sum(Booking.amount), 0),
            func.coalesce(func.sum(Booking.deduction), 0),
            func.coalesce(func.sum(Booking.nights), 0),
        )
        .filter(Booking.status == BookingStatus.APPROVED)
        .one()
    )
    revenue, deductions = Decimal(str(revenue)), Decimal(str(deductions))
    return BookingStats(
        total_bookings=sum(counts.values()),
        pending_bookings=counts[BookingStatus.PENDING],
        approved_bookings=counts[BookingStatus.APPROVED],
        rejected_bookings=counts[BookingStatus.REJECTED],
        cancelled_bookings=counts[BookingStatus.CANCELLED],
        total_revenue=revenue,
        total_deductions=deductions,
        net_revenue=revenue - deductions,
        total_nights=nights,
    )
