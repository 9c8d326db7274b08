"""Rental-history ledger: append-only financial snapshots of approved bookings."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import distinct, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AuthorizationError, InternalError, NotFoundError
from .models import RentalHistory, User
from .pagination import apply_sort, paginate
from .permissions import Operation, is_allowed
from .schemas import LedgerStats, Pagination, RentalHistoryCreate

logger = logging.getLogger(__name__)

LEDGER_SORT_COLUMNS = {
    "id": RentalHistory.id,
    "created_at": RentalHistory.created_at,
    "check_in": RentalHistory.period_check_in,
    "check_out": RentalHistory.period_check_out,
    "nights": RentalHistory.nights,
    "gross": RentalHistory.gross,
    "net": RentalHistory.net,
}


@dataclass(frozen=True)
class LedgerSnapshot:
    """Values copied out of a booking at the moment it is approved."""

    property_id: int
    guest_id: int
    check_in: datetime
    check_out: datetime
    nights: int
    gross: Decimal
    net: Decimal

    def to_entry(self, booking_id: Optional[int] = None) -> RentalHistory:
        return RentalHistory(
            property_id=self.property_id,
            guest_id=self.guest_id,
            booking_id=booking_id,
            period_check_in=self.check_in,
            period_check_out=self.check_out,
            nights=self.nights,
            gross=self.gross,
            net=self.net,
        )


def create_entry(db: Session, data: RentalHistoryCreate) -> RentalHistory:
    snapshot = LedgerSnapshot(
        property_id=data.property_id,
        guest_id=data.guest_id,
        check_in=data.check_in,
        check_out=data.check_out,
        nights=data.nights,
        gross=data.gross,
        net=data.net,
    )
    entry = snapshot.to_entry()
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Failed to record rental history for property %s", data.property_id)
        raise InternalError(f"Failed to record rental history: {exc}") from exc
    db.refresh(entry)
    logger.info("Rental history %s recorded manually for property %s", entry.id, entry.property_id)
    return entry


def list_entries(
    db: Session,
    *,
    page: int,
    limit: int,
    property_id: Optional[int] = None,
    guest_id: Optional[int] = None,
    sort_by: str = "-created_at",
) -> Tuple[list[RentalHistory], Pagination]:
    query = db.query(RentalHistory)
    if property_id is not None:
        query = query.filter(RentalHistory.property_id == property_id)
    if guest_id is not None:
        query = query.filter(RentalHistory.guest_id == guest_id)
    query = apply_sort(query, sort_by, LEDGER_SORT_COLUMNS)
    return paginate(query, page, limit)


def get_entry(db: Session, entry_id: int, viewer: User) -> RentalHistory:
    entry = db.get(RentalHistory, entry_id)
    if not entry:
        raise NotFoundError("Rental history not found")
    if entry.guest_id != viewer.id and not is_allowed(viewer.role, Operation.LEDGER_READ_ANY):
        raise AuthorizationError("Not authorized to view this rental history")
    return entry


def ledger_stats(db: Session) -> LedgerStats:
    total, gross, net, nights, guests, properties = db.query(
        func.count(RentalHistory.id),
        func.coalesce(func.sum(RentalHistory.gross), 0),
        func.coalesce(func.sum(RentalHistory.net), 0),
        func.coalesce(func.sum(RentalHistory.nights), 0),
        func.count(distinct(RentalHistory.guest_id)),
        func.count(distinct(RentalHistory.property_id)),
    ).one()
    return LedgerStats(
        total_rentals=total,
        total_gross_revenue=Decimal(str(gross)),
        total_net_revenue=Decimal(str(net)),
        total_nights=nights,
        unique_guests=guests,
        unique_properties=properties,
    )
