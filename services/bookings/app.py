from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from rentease import booking_engine, ledger
from rentease.config import get_settings
from rentease.database import Base, engine, get_db
from rentease.dependencies import get_current_user, require
from rentease.errors import AuthorizationError, NotFoundError, install_error_handlers
from rentease.logging_middleware import add_audit_middleware
from rentease.models import BookingStatus, Property, User
from rentease.pagination import MAX_PAGE_SIZE
from rentease.permissions import Operation, is_allowed
from rentease.rate_limit import apply_rate_limiter, limiter
from rentease.revenue import revenue_by_property
from rentease.schemas import BookingCreate, BookingRead, BookingUpdate, RentalHistoryCreate, RentalHistoryRead, ok

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    install_error_handlers(fastapi_app)
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _booking_page(message: str, result) -> dict:
    items, pagination = result
    return ok(message, bookings=[BookingRead.model_validate(item) for item in items], pagination=pagination)


def _ledger_page(message: str, result) -> dict:
    items, pagination = result
    return ok(message, rental_history=[RentalHistoryRead.model_validate(item) for item in items], pagination=pagination)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


# Bookings


@app.post("/bookings", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(require(Operation.BOOKING_CREATE)),
    db: Session = Depends(get_db),
) -> dict:
    booking = booking_engine.create_booking(db, current_user, booking_in)
    return ok("Booking created successfully", booking=BookingRead.model_validate(booking))


@app.get("/bookings")
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    guest_id: Optional[int] = Query(None, alias="guestId"),
    property_id: Optional[int] = Query(None, alias="propertyId"),
    sort_by: str = Query("-created_at", alias="sortBy"),
    _: User = Depends(require(Operation.BOOKING_LIST)),
    db: Session = Depends(get_db),
) -> dict:
    result = booking_engine.list_bookings(
        db,
        page=page,
        limit=limit,
        status=status_filter,
        guest_id=guest_id,
        property_id=property_id,
        sort_by=sort_by,
    )
    return _booking_page("Bookings retrieved successfully", result)


@app.get("/bookings/stats")
@limiter.limit("30/minute")
def booking_stats(
    request: Request,
    _: User = Depends(require(Operation.BOOKING_STATS)),
    db: Session = Depends(get_db),
) -> dict:
    return ok("Booking statistics retrieved successfully", stats=booking_engine.booking_stats(db))


@app.get("/bookings/me")
@limiter.limit("30/minute")
def my_bookings(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    result = booking_engine.list_bookings(db, page=page, limit=limit, status=status_filter, guest_id=current_user.id)
    return _booking_page("Your bookings retrieved successfully", result)


@app.get("/bookings/guest/{guest_id}")
@limiter.limit("30/minute")
def guest_bookings(
    request: Request,
    guest_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    if guest_id != current_user.id and not is_allowed(current_user.role, Operation.BOOKING_READ_ANY):
        raise AuthorizationError("Not authorized to view this guest's bookings")
    result = booking_engine.list_bookings(db, page=page, limit=limit, guest_id=guest_id)
    return _booking_page("Guest bookings retrieved successfully", result)


@app.get("/bookings/property/{property_id}")
@limiter.limit("30/minute")
def property_bookings(
    request: Request,
    property_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    listing = db.get(Property, property_id)
    if not listing:
        raise NotFoundError("Property not found")
    if listing.owner_id != current_user.id and not is_allowed(current_user.role, Operation.BOOKING_READ_ANY):
        raise AuthorizationError("Not authorized to view this property's bookings")
    result = booking_engine.list_bookings(db, page=page, limit=limit, property_id=property_id)
    return _booking_page("Property bookings retrieved successfully", result)


@app.get("/bookings/{booking_id}")
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    booking = booking_engine.get_booking(db, booking_id, current_user)
    return ok("Booking retrieved successfully", booking=BookingRead.model_validate(booking))


@app.put("/bookings/{booking_id}")
@limiter.limit("15/minute")
def update_booking(
    request: Request,
    booking_id: int,
    booking_update: BookingUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    booking, entry = booking_engine.update_booking(db, booking_id, booking_update, current_user)
    data = {"booking": BookingRead.model_validate(booking)}
    if entry is not None:
        data["rental_history"] = RentalHistoryRead.model_validate(entry)
    return ok("Booking updated successfully", **data)


@app.delete("/bookings/{booking_id}")
@limiter.limit("15/minute")
def delete_booking(
    request: Request,
    booking_id: int,
    _: User = Depends(require(Operation.BOOKING_DELETE)),
    db: Session = Depends(get_db),
) -> dict:
    booking_engine.delete_booking(db, booking_id)
    return ok("Booking deleted successfully")


# Rental history


@app.post("/rental-history", status_code=status.HTTP_201_CREATED)
@limiter.limit("15/minute")
def create_rental_history(
    request: Request,
    entry_in: RentalHistoryCreate,
    _: User = Depends(require(Operation.LEDGER_CREATE)),
    db: Session = Depends(get_db),
) -> dict:
    entry = ledger.create_entry(db, entry_in)
    return ok("Rental history created successfully", rental_history=RentalHistoryRead.model_validate(entry))


@app.get("/rental-history")
@limiter.limit("30/minute")
def list_rental_history(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    property_id: Optional[int] = Query(None, alias="propertyId"),
    guest_id: Optional[int] = Query(None, alias="guestId"),
    sort_by: str = Query("-created_at", alias="sortBy"),
    _: User = Depends(require(Operation.LEDGER_LIST)),
    db: Session = Depends(get_db),
) -> dict:
    result = ledger.list_entries(
        db, page=page, limit=limit, property_id=property_id, guest_id=guest_id, sort_by=sort_by
    )
    return _ledger_page("Rental history retrieved successfully", result)


@app.get("/rental-history/stats")
@limiter.limit("30/minute")
def rental_history_stats(
    request: Request,
    _: User = Depends(require(Operation.LEDGER_STATS)),
    db: Session = Depends(get_db),
) -> dict:
    return ok("Rental history statistics retrieved successfully", stats=ledger.ledger_stats(db))


@app.get("/rental-history/me")
@limiter.limit("30/minute")
def my_rental_history(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    result = ledger.list_entries(db, page=page, limit=limit, guest_id=current_user.id)
    return _ledger_page("Your rental history retrieved successfully", result)


@app.get("/rental-history/{entry_id}")
@limiter.limit("60/minute")
def get_rental_history(
    request: Request,
    entry_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    entry = ledger.get_entry(db, entry_id, current_user)
    return ok("Rental history retrieved successfully", rental_history=RentalHistoryRead.model_validate(entry))


# Revenue


@app.get("/admin/my-revenue")
@limiter.limit("30/minute")
def my_revenue(
    request: Request,
    _: User = Depends(require(Operation.REVENUE_READ)),
    db: Session = Depends(get_db),
) -> dict:
    report = revenue_by_property(db)
    return ok("Revenue retrieved successfully", **report.model_dump(mode="json", by_alias=True))
