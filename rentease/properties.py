"""Listing management: CRUD over properties and their pictures."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from cachetools import TTLCache
from fastapi import UploadFile
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import exists, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .config import get_settings
from .errors import AuthorizationError, InternalError, NotFoundError, ValidationError, describe_validation_errors
from .models import Booking, BookingStatus, CategoryEnum, Property, User
from .pagination import paginate
from .permissions import Operation, is_allowed
from .schemas import Pagination, PropertyCreate, PropertyStats, PropertyUpdate
from .storage import BlobStore

logger = logging.getLogger(__name__)
settings = get_settings()

M = TypeVar("M", bound=BaseModel)

_STATS_KEY = "property-stats"
_stats_cache: TTLCache = TTLCache(maxsize=1, ttl=settings.stats_cache_ttl)


def invalidate_stats_cache() -> None:
    _stats_cache.clear()


def parse_form(model: Type[M], data: Dict[str, Any]) -> M:
    """Validate multipart form fields into ``model``, reporting problems as a 400."""

    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(describe_validation_errors(exc.errors())) from exc


def _check_upload_count(uploads: Sequence[UploadFile], *, required: bool) -> None:
    if required and not uploads:
        raise ValidationError("At least one picture is required")
    if len(uploads) > settings.max_pictures:
        raise ValidationError(f"A maximum of {settings.max_pictures} pictures can be uploaded at once")


def _can_manage(user: Optional[User], listing: Property) -> bool:
    return user is not None and (listing.owner_id == user.id or is_allowed(user.role, Operation.PROPERTY_MANAGE_ANY))


def _commit_or_release(db: Session, store: BlobStore, new_keys: Iterable[str], action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        released = store.delete_many(new_keys)
        logger.exception("Failed to %s; released %d uploaded picture(s)", action, released)
        raise InternalError(f"Failed to {action}: {exc}") from exc


def create_property(db: Session, store: BlobStore, owner: User, data: PropertyCreate, uploads: Sequence[UploadFile]) -> Property:
    _check_upload_count(uploads, required=True)
    keys = store.save_many(uploads)
    listing = Property(
        name=data.name,
        description=data.description,
        category=data.category,
        price=data.price,
        rooms=data.rooms,
        bed=data.bed,
        bathroom=data.bathroom,
        barangay=data.location.barangay,
        city=data.location.city,
        province=data.location.province,
        pictures=keys,
        owner_id=owner.id,
    )
    db.add(listing)
    _commit_or_release(db, store, keys, "create property")
    invalidate_stats_cache()
    logger.info("Property %s created by user %s with %d picture(s)", listing.id, owner.id, len(keys))
    return load_property(db, listing.id)


def load_property(db: Session, property_id: int) -> Property:
    listing = db.query(Property).options(joinedload(Property.owner)).filter(Property.id == property_id).first()
    if not listing:
        raise NotFoundError("Property not found")
    return listing


def list_properties(
    db: Session,
    *,
    page: int,
    limit: int,
    viewer: Optional[User] = None,
    category: Optional[CategoryEnum] = None,
    city: Optional[str] = None,
    province: Optional[str] = None,
    barangay: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    search: Optional[str] = None,
    include_disabled: bool = False,
    exclude_booked: bool = False,
    owner_id: Optional[int] = None,
) -> Tuple[List[Property], Pagination]:
    query = db.query(Property)
    if owner_id is not None:
        query = query.filter(Property.owner_id == owner_id)
    elif not (include_disabled and viewer is not None and is_allowed(viewer.role, Operation.PROPERTY_VIEW_DISABLED)):
        query = query.filter(Property.disabled.is_(False))
    if category is not None:
        query = query.filter(Property.category == category)
    if city:
        query = query.filter(Property.city.ilike(f"%{city}%"))
    if province:
        query = query.filter(Property.province.ilike(f"%{province}%"))
    if barangay:
        query = query.filter(Property.barangay.ilike(f"%{barangay}%"))
    if min_price is not None:
        query = query.filter(Property.price >= min_price)
    if max_price is not None:
        query = query.filter(Property.price <= max_price)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Property.name.ilike(pattern), Property.description.ilike(pattern)))
    if exclude_booked:
        approved = exists().where(Booking.property_id == Property.id, Booking.status == BookingStatus.APPROVED)
        query = query.filter(~approved)
    query = query.order_by(Property.created_at.desc(), Property.id.desc())
    return paginate(query, page, limit, joinedload(Property.owner))


def get_property(db: Session, property_id: int, viewer: Optional[User] = None) -> Property:
    listing = load_property(db, property_id)
    if listing.disabled and not _can_manage(viewer, listing):
        raise NotFoundError("Property not found")
    return listing


def update_property(
    db: Session,
    store: BlobStore,
    property_id: int,
    data: PropertyUpdate,
    actor: User,
    *,
    remove_pictures: Sequence[str] = (),
    uploads: Sequence[UploadFile] = (),
) -> Property:
    listing = load_property(db, property_id)
    if not _can_manage(actor, listing):
        raise AuthorizationError("Not authorized to update this property")
    _check_upload_count(uploads, required=False)

    to_remove = set(remove_pictures)
    removed = [key for key in listing.pictures if key in to_remove]
    kept = [key for key in listing.pictures if key not in removed]
    if not kept and not uploads:
        raise ValidationError("A property must keep at least one picture")

    new_keys = store.save_many(uploads)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    changes.update(changes.pop("location", None) or {})
    for field, value in changes.items():
        setattr(listing, field, value)
    if removed or new_keys:
        listing.pictures = kept + new_keys
    _commit_or_release(db, store, new_keys, "update property")

    store.delete_many(removed)
    invalidate_stats_cache()
    logger.info(
        "Property %s updated by user %s (+%d/-%d pictures)", property_id, actor.id, len(new_keys), len(removed)
    )
    db.refresh(listing)
    return listing


def delete_property(db: Session, store: BlobStore, property_id: int, actor: User) -> None:
    listing = load_property(db, property_id)
    if not _can_manage(actor, listing):
        raise AuthorizationError("Not authorized to delete this property")
    pictures = list(listing.pictures)
    db.delete(listing)
    _commit_or_release(db, store, (), "delete property")
    deleted = store.delete_many(pictures)
    invalidate_stats_cache()
    logger.info("Property %s deleted by user %s; %d picture(s) removed", property_id, actor.id, deleted)


def property_stats(db: Session) -> PropertyStats:
    cached = _stats_cache.get(_STATS_KEY)
    if cached is not None:
        return cached

    total = db.query(func.count(Property.id)).scalar() or 0
    disabled = db.query(func.count(Property.id)).filter(Property.disabled.is_(True)).scalar() or 0
    recent = (
        db.query(func.count(Property.id))
        .filter(Property.created_at >= datetime.utcnow() - timedelta(days=7))
        .scalar()
        or 0
    )
    by_category = {category.value: 0 for category in CategoryEnum}
    for category, count in db.query(Property.category, func.count(Property.id)).group_by(Property.category).all():
        by_category[category.value] = count

    stats = PropertyStats(
        total=total,
        enabled=total - disabled,
        disabled=disabled,
        recent_properties=recent,
        by_category=by_category,
    )
    _stats_cache[_STATS_KEY] = stats
    return stats
