import os
import tempfile
from decimal import Decimal
from typing import Callable, Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="rentease-uploads-"))
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="rentease-logs-"))
os.environ["SMTP_HOST"] = ""

from rentease.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from rentease import properties as listings  # noqa: E402
from rentease.auth import create_user_token, get_password_hash  # noqa: E402
from rentease.database import Base, SessionLocal, engine  # noqa: E402
from rentease.models import CategoryEnum, Property, RoleEnum, User  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.properties.app import app as properties_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402

PASSWORD = "Passw0rd!"


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    listings.invalidate_stats_cache()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def properties_client() -> Generator[TestClient, None, None]:
    with TestClient(properties_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


@pytest.fixture()
def make_user(db_session) -> Callable[..., User]:
    counter = {"n": 0}

    def factory(
        role: RoleEnum = RoleEnum.RENTOR,
        *,
        email: str | None = None,
        is_verified: bool = True,
        is_id_verified: bool = True,
    ) -> User:
        counter["n"] += 1
        user = User(
            full_name=f"{role.value.title()} {counter['n']}",
            email=email or f"{role.value}{counter['n']}@example.com",
            hashed_password=get_password_hash(PASSWORD),
            role=role,
            valid_id="PH-ID-0001",
            age=30,
            is_verified=is_verified,
            is_id_verified=is_id_verified,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return factory


@pytest.fixture()
def make_property(db_session) -> Callable[..., Property]:
    def factory(owner: User, *, name: str = "Seaside Condo", price: str = "100.00", disabled: bool = False) -> Property:
        listing = Property(
            name=name,
            description="Two-bedroom unit near the beach",
            category=CategoryEnum.APARTMENT,
            price=Decimal(price),
            rooms=2,
            bed=2,
            bathroom=1,
            barangay="Poblacion",
            city="Makati",
            province="Metro Manila",
            pictures=["seed.png"],
            disabled=disabled,
            owner_id=owner.id,
        )
        db_session.add(listing)
        db_session.commit()
        db_session.refresh(listing)
        return listing

    return factory


def auth_header(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture()
def admin(make_user) -> User:
    return make_user(RoleEnum.ADMIN)


@pytest.fixture()
def staff(make_user) -> User:
    return make_user(RoleEnum.STAFF)


@pytest.fixture()
def guest(make_user) -> User:
    return make_user(RoleEnum.RENTOR)


@pytest.fixture()
def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_header
