#!/usr/bin/env python3
"""Seed the database with a bootstrap admin, sample accounts and sample listings."""
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from rentease.auth import get_password_hash
from rentease.database import Base, SessionLocal, engine
from rentease.models import CategoryEnum, Property, RoleEnum, User

USERS = [
    {
        "full_name": "Admin User",
        "email": "admin@rentease.com",
        "password": "Admin@123",
        "role": RoleEnum.ADMIN,
        "valid_id": "ADMIN-ID-001",
        "age": 35,
        "address": "123 Admin Street, Metro Manila, Philippines",
        "is_id_verified": True,
    },
    {
        "full_name": "John Doe",
        "email": "john.doe@example.com",
        "password": "Password@123",
        "role": RoleEnum.RENTOR,
        "valid_id": "SSS-12345678",
        "age": 28,
        "address": "456 Makati Avenue, Makati City, Metro Manila",
        "is_id_verified": True,
    },
    {
        "full_name": "Maria Santos",
        "email": "maria.santos@example.com",
        "password": "Password@123",
        "role": RoleEnum.RENTOR,
        "valid_id": "UMID-87654321",
        "age": 32,
        "address": "789 Taft Avenue, Pasay City, Metro Manila",
        "is_id_verified": True,
    },
    {
        "full_name": "Robert Chen",
        "email": "robert.chen@example.com",
        "password": "Password@123",
        "role": RoleEnum.STAFF,
        "valid_id": "PASSPORT-ABC123",
        "age": 26,
        "address": "321 Ortigas Center, Pasig City, Metro Manila",
        "is_id_verified": True,
    },
    {
        "full_name": "Ana Reyes",
        "email": "ana.reyes@example.com",
        "password": "Password@123",
        "role": RoleEnum.RENTOR,
        "valid_id": "DRIVERS-456789",
        "age": 24,
        "address": "654 Quezon Avenue, Quezon City, Metro Manila",
        "is_id_verified": False,
    },
]

PROPERTIES = [
    {
        "name": "Modern 2BR Condo in Makati",
        "description": "Fully furnished 2-bedroom condo unit with city view, modern kitchen and 24/7 security.",
        "price": "25000",
        "rooms": 2,
        "bed": 2,
        "bathroom": 2,
        "barangay": "San Antonio",
        "city": "Makati",
        "province": "Metro Manila",
    },
    {
        "name": "Luxury Studio in BGC",
        "description": "High-end studio in Bonifacio Global City with gym, pool and rooftop lounge.",
        "price": "30000",
        "rooms": 1,
        "bed": 1,
        "bathroom": 1,
        "barangay": "Fort Bonifacio",
        "city": "Taguig",
        "province": "Metro Manila",
    },
    {
        "name": "Cozy 1BR Apartment in Quezon City",
        "description": "Affordable 1-bedroom apartment near major universities. Includes parking space.",
        "price": "15000",
        "rooms": 1,
        "bed": 1,
        "bathroom": 1,
        "barangay": "Diliman",
        "city": "Quezon City",
        "province": "Metro Manila",
    },
    {
        "name": "Spacious 3BR House in Pasig",
        "description": "3-bedroom house with garden and garage, near schools and markets.",
        "price": "35000",
        "rooms": 3,
        "bed": 3,
        "bathroom": 2,
        "barangay": "Kapitolyo",
        "city": "Pasig",
        "province": "Metro Manila",
    },
    {
        "name": "Affordable Studio in Manila",
        "description": "Furnished studio for students and young professionals, near public transportation.",
        "price": "12000",
        "rooms": 1,
        "bed": 1,
        "bathroom": 1,
        "barangay": "Sampaloc",
        "city": "Manila",
        "province": "Metro Manila",
    },
]


def seed_users(db: Session) -> List[User]:
    """Insert the sample accounts, skipping any email that is already registered."""
    created = []
    for data in USERS:
        if db.query(User).filter(User.email == data["email"]).first():
            continue
        fields = {key: value for key, value in data.items() if key != "password"}
        user = User(**fields, hashed_password=get_password_hash(data["password"]), is_verified=True)
        db.add(user)
        created.append(user)
    db.commit()
    return created


def seed_properties(db: Session) -> List[Property]:
    """Insert the sample listings, spread evenly over rentors and admins."""
    if db.query(Property).first():
        return []
    owners = (
        db.query(User).filter(User.role.in_([RoleEnum.RENTOR, RoleEnum.ADMIN])).order_by(User.id).all()
    )
    if not owners:
        raise RuntimeError("No users found; seed users first")

    created = []
    for index, data in enumerate(PROPERTIES):
        listing = Property(
            **{**data, "price": Decimal(data["price"])},
            category=CategoryEnum.APARTMENT,
            pictures=[f"seed-{index + 1}.jpg"],
            owner_id=owners[index % len(owners)].id,
        )
        db.add(listing)
        created.append(listing)
    db.commit()
    return created


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        users = seed_users(db)
        print(f"Seeded {len(users)} users.")
        for listing in seed_properties(db):
            print(f"- {listing.name}: {listing.price}/month ({listing.city}, {listing.province})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
