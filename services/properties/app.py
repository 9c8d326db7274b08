import json
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from rentease import properties as listings
from rentease.config import get_settings
from rentease.database import Base, engine, get_db
from rentease.dependencies import get_current_user, get_optional_user, require
from rentease.errors import install_error_handlers
from rentease.logging_middleware import add_audit_middleware
from rentease.models import CategoryEnum, User
from rentease.pagination import MAX_PAGE_SIZE
from rentease.permissions import Operation
from rentease.rate_limit import apply_rate_limiter, limiter
from rentease.schemas import PropertyCreate, PropertyRead, PropertyUpdate, ok
from rentease.storage import BlobStore, get_blob_store

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Properties Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "properties")
    install_error_handlers(fastapi_app)
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    fastapi_app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
    return fastapi_app


app = create_app()


def _form_fields(**fields: Any) -> Dict[str, Any]:
    """Drop unsent form fields and nest the location parts."""

    location = {key: fields.pop(key) for key in ("barangay", "city", "province")}
    data = {key: value for key, value in fields.items() if value is not None}
    location = {key: value for key, value in location.items() if value is not None}
    if location:
        data["location"] = location
    return data


def _picture_keys(values: List[str]) -> List[str]:
    # clients may send either repeated fields or a single JSON array
    keys: List[str] = []
    for value in values:
        if value.startswith("["):
            try:
                keys.extend(str(item) for item in json.loads(value))
                continue
            except json.JSONDecodeError:
                pass
        keys.append(value)
    return keys


def _payload(listing) -> PropertyRead:
    return PropertyRead.model_validate(listing)


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "properties"}


@app.post("/properties", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_property(
    request: Request,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    barangay: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    province: Optional[str] = Form(None),
    rooms: Optional[str] = Form(None),
    bed: Optional[str] = Form(None),
    bathroom: Optional[str] = Form(None),
    pictures: List[UploadFile] = File(default=[]),
    current_user: User = Depends(require(Operation.PROPERTY_CREATE)),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
) -> dict:
    fields = _form_fields(
        name=name,
        description=description,
        category=category,
        price=price,
        barangay=barangay,
        city=city,
        province=province,
        rooms=rooms,
        bed=bed,
        bathroom=bathroom,
    )
    data = listings.parse_form(PropertyCreate, fields)
    listing = listings.create_property(db, store, current_user, data, pictures)
    return ok("Property created successfully", property=_payload(listing))


@app.get("/properties")
@limiter.limit("60/minute")
def list_properties(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    category: Optional[CategoryEnum] = None,
    city: Optional[str] = None,
    province: Optional[str] = None,
    barangay: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    search: Optional[str] = None,
    include_disabled: bool = Query(False, alias="includeDisabled"),
    exclude_booked: bool = Query(False, alias="excludeBooked"),
    viewer: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
) -> dict:
    items, pagination = listings.list_properties(
        db,
        page=page,
        limit=limit,
        viewer=viewer,
        category=category,
        city=city,
        province=province,
        barangay=barangay,
        min_price=min_price,
        max_price=max_price,
        search=search,
        include_disabled=include_disabled,
        exclude_booked=exclude_booked,
    )
    return ok(
        "Properties retrieved successfully",
        properties=[_payload(item) for item in items],
        pagination=pagination,
    )


@app.get("/properties/mine")
@limiter.limit("30/minute")
def my_properties(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    items, pagination = listings.list_properties(db, page=page, limit=limit, owner_id=current_user.id)
    return ok(
        "Your properties retrieved successfully",
        properties=[_payload(item) for item in items],
        pagination=pagination,
    )


@app.get("/properties/stats")
@limiter.limit("30/minute")
def property_stats(
    request: Request,
    _: User = Depends(require(Operation.PROPERTY_STATS)),
    db: Session = Depends(get_db),
) -> dict:
    return ok("Property statistics retrieved successfully", stats=listings.property_stats(db))


@app.get("/properties/{property_id}")
@limiter.limit("60/minute")
def get_property(
    request: Request,
    property_id: int,
    viewer: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
) -> dict:
    return ok("Property retrieved successfully", property=_payload(listings.get_property(db, property_id, viewer)))


@app.put("/properties/{property_id}")
@limiter.limit("15/minute")
def update_property(
    request: Request,
    property_id: int,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    barangay: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    province: Optional[str] = Form(None),
    rooms: Optional[str] = Form(None),
    bed: Optional[str] = Form(None),
    bathroom: Optional[str] = Form(None),
    disabled: Optional[str] = Form(None),
    remove_pictures: List[str] = Form(default=[], alias="removePictures"),
    pictures: List[UploadFile] = File(default=[]),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
) -> dict:
    fields = _form_fields(
        name=name,
        description=description,
        category=category,
        price=price,
        barangay=barangay,
        city=city,
        province=province,
        rooms=rooms,
        bed=bed,
        bathroom=bathroom,
        disabled=disabled,
    )
    data = listings.parse_form(PropertyUpdate, fields)
    listing = listings.update_property(
        db,
        store,
        property_id,
        data,
        current_user,
        remove_pictures=_picture_keys(remove_pictures),
        uploads=pictures,
    )
    return ok("Property updated successfully", property=_payload(listing))


@app.delete("/properties/{property_id}")
@limiter.limit("15/minute")
def delete_property(
    request: Request,
    property_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
) -> dict:
    listings.delete_property(db, store, property_id, current_user)
    return ok("Property deleted successfully")
