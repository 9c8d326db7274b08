"""Per-listing revenue computed from the rental-history ledger."""
from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import Property, RentalHistory
from .schemas import PropertyRevenue, RevenueReport

RevenueRow = Tuple[int, Optional[str], Decimal]


def summarize_revenue(rows: Iterable[RevenueRow]) -> RevenueReport:
    """Build the report from ``(property_id, name, net_sum)`` rows, highest earner first."""

    entries = [
        PropertyRevenue(property_id=property_id, property_name=name, property_revenue=Decimal(str(net or 0)))
        for property_id, name, net in rows
    ]
    entries.sort(key=lambda entry: (-entry.property_revenue, entry.property_id))
    return RevenueReport(
        properties=entries,
        total_revenue=sum((entry.property_revenue for entry in entries), Decimal("0")),
        property_count=len(entries),
    )


def revenue_by_property(db: Session) -> RevenueReport:
    # outer join: ledger rows outlive deleted listings, whose name comes back as None
    rows = (
        db.query(RentalHistory.property_id, Property.name, func.sum(RentalHistory.net))
        .outerjoin(Property, Property.id == RentalHistory.property_id)
        .group_by(RentalHistory.property_id, Property.name)
        .all()
    )
    return summarize_revenue(rows)
