from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rentease import auth
from rentease.config import get_settings
from rentease.database import Base, engine, get_db
from rentease.dependencies import get_current_user, require
from rentease.errors import AuthorizationError, ConflictError, InternalError, NotFoundError, ValidationError, install_error_handlers
from rentease.logging_middleware import add_audit_middleware
from rentease.mailer import send_verification_email
from rentease.models import RoleEnum, User
from rentease.pagination import MAX_PAGE_SIZE, paginate
from rentease.permissions import Operation
from rentease.rate_limit import apply_rate_limiter, limiter
from rentease.schemas import (
    EmailRequest,
    LoginRequest,
    PasswordChange,
    UserCreate,
    UserRead,
    UserStats,
    UserUpdate,
    ok,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Users Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "users")
    install_error_handlers(fastapi_app)
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


def _user_payload(user: User) -> UserRead:
    return UserRead.model_validate(user)


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def _commit(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Email already registered") from exc


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "users"}


@app.post("/auth/register", status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register(request: Request, user_in: UserCreate, db: Session = Depends(get_db)) -> dict:
    email = user_in.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("User with this email already exists")

    admins_exist = db.query(User).filter(User.role == RoleEnum.ADMIN).first() is not None
    if user_in.role != RoleEnum.RENTOR and admins_exist:
        raise AuthorizationError("Only admins can assign elevated roles")

    user = User(
        full_name=user_in.full_name.strip(),
        email=email,
        hashed_password=auth.get_password_hash(user_in.password),
        role=user_in.role,
        age=user_in.age,
        valid_id=user_in.valid_id,
        address=user_in.address,
    )
    db.add(user)
    _commit(db)
    db.refresh(user)

    if send_verification_email(user):
        message = "User registered successfully. Please check your email for verification link."
    else:
        message = "User registered successfully, but verification email could not be sent. Please contact support."
    return ok(message, user=_user_payload(user))


@app.get("/auth/verify-email")
@limiter.limit("20/minute")
def verify_email(request: Request, token: str = Query(..., min_length=1), db: Session = Depends(get_db)) -> dict:
    payload = auth.decode_email_verification_token(token)
    user = db.get(User, int(payload.get("sub", 0)))
    if not user or user.email != payload.get("email"):
        raise ValidationError("Invalid verification token")
    if user.is_verified:
        return ok("Email already verified", user=_user_payload(user))
    user.is_verified = True
    db.commit()
    db.refresh(user)
    return ok("Email verified successfully. Your account is now awaiting ID approval.", user=_user_payload(user))


@app.post("/auth/resend-verification")
@limiter.limit("3/minute")
def resend_verification(request: Request, body: EmailRequest, db: Session = Depends(get_db)) -> dict:
    user = db.query(User).filter(User.email == body.email.lower()).first()
    if not user:
        raise NotFoundError("User not found")
    if user.is_verified:
        raise ValidationError("Email is already verified")
    if not send_verification_email(user):
        raise InternalError("Failed to send verification email. Please try again later.")
    return ok("Verification email sent. Please check your inbox.")


@app.post("/auth/login")
@limiter.limit("10/minute")
def login(request: Request, credentials: LoginRequest, db: Session = Depends(get_db)) -> dict:
    user = auth.authenticate_user(db, credentials.email, credentials.password)
    user.is_active = True
    user.last_activity = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return ok("Login successful", token=auth.create_user_token(user), user=_user_payload(user))


@app.post("/auth/logout")
@limiter.limit("20/minute")
def logout(request: Request, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    current_user.is_active = False
    current_user.last_activity = datetime.utcnow()
    db.commit()
    return ok("Logged out successfully")


@app.get("/auth/profile")
@limiter.limit("30/minute")
def get_profile(request: Request, current_user: User = Depends(get_current_user)) -> dict:
    return ok("Profile retrieved successfully", user=_user_payload(current_user))


@app.put("/auth/profile")
@limiter.limit("10/minute")
def update_profile(
    request: Request,
    user_update: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    changes = user_update.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        taken = db.query(User).filter(User.email == changes["email"], User.id != current_user.id).first()
        if taken:
            raise ConflictError("Email already in use")
    for key, value in changes.items():
        setattr(current_user, key, value)
    _commit(db)
    db.refresh(current_user)
    return ok("Profile updated successfully", user=_user_payload(current_user))


@app.put("/auth/change-password")
@limiter.limit("5/minute")
def change_password(
    request: Request,
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    if not auth.verify_password(body.current_password, current_user.hashed_password):
        raise ValidationError("Current password is incorrect")
    current_user.hashed_password = auth.get_password_hash(body.new_password)
    db.commit()
    return ok("Password changed successfully")


@app.get("/admin/users")
@limiter.limit("30/minute")
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    role: Optional[RoleEnum] = None,
    unverified_email: bool = Query(False, alias="unverifiedEmail"),
    unverified_id: bool = Query(False, alias="unverifiedId"),
    _: User = Depends(require(Operation.USER_ADMIN)),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(User)
    if role is not None:
        query = query.filter(User.role == role)
    if unverified_email:
        query = query.filter(User.is_verified.is_(False))
    if unverified_id:
        query = query.filter(User.is_id_verified.is_(False))
    users, pagination = paginate(query.order_by(User.created_at.desc(), User.id.desc()), page, limit)
    return ok(
        "Users retrieved successfully",
        users=[_user_payload(user) for user in users],
        pagination=pagination,
    )


@app.get("/admin/users/{user_id}")
@limiter.limit("30/minute")
def get_user(
    request: Request,
    user_id: int,
    _: User = Depends(require(Operation.USER_ADMIN)),
    db: Session = Depends(get_db),
) -> dict:
    return ok("User retrieved successfully", user=_user_payload(_get_user_or_404(db, user_id)))


@app.patch("/admin/users/{user_id}/verify-id")
@limiter.limit("20/minute")
def verify_user_id(
    request: Request,
    user_id: int,
    _: User = Depends(require(Operation.USER_ADMIN)),
    db: Session = Depends(get_db),
) -> dict:
    user = _get_user_or_404(db, user_id)
    if user.is_id_verified:
        return ok("User ID is already verified", user=_user_payload(user))
    user.is_id_verified = True
    db.commit()
    db.refresh(user)
    return ok("User ID verified successfully", user=_user_payload(user))


@app.get("/users/stats")
@limiter.limit("30/minute")
def user_stats(
    request: Request,
    _: User = Depends(require(Operation.USER_ADMIN)),
    db: Session = Depends(get_db),
) -> dict:
    total = db.query(func.count(User.id)).scalar() or 0
    active = db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0
    verified = db.query(func.count(User.id)).filter(User.is_verified.is_(True)).scalar() or 0
    by_role = {role.value: 0 for role in RoleEnum}
    for role, count in db.query(User.role, func.count(User.id)).group_by(User.role).all():
        by_role[role.value] = count
    stats = UserStats(
        total=total,
        active=active,
        inactive=total - active,
        verified=verified,
        unverified=total - verified,
        by_role=by_role,
    )
    return ok("User statistics retrieved successfully", stats=stats)
