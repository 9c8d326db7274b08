import os
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rentease.config import get_settings
from rentease.models import Booking, BookingStatus, Property

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

LISTING_FORM = {
    "name": "Downtown Loft",
    "description": "Bright loft with city views",
    "category": "Apartment",
    "price": "1500.50",
    "barangay": "San Antonio",
    "city": "Pasig",
    "province": "Metro Manila",
    "rooms": "1",
    "bed": "1",
    "bathroom": "1",
}


def picture(name: str = "front.png", content: bytes = PNG, content_type: str = "image/png"):
    return ("pictures", (name, content, content_type))


def upload_path(key: str) -> str:
    return os.path.join(get_settings().upload_dir, key)


def create_listing(properties_client, headers, **overrides) -> dict:
    form = {**LISTING_FORM, **overrides}
    response = properties_client.post("/properties", data=form, files=[picture()], headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["property"]


class TestCreateProperty:
    def test_create_with_pictures(self, properties_client, guest, headers_for):
        response = properties_client.post(
            "/properties",
            data=LISTING_FORM,
            files=[picture("front.png"), picture("back.jpg", content_type="image/jpeg")],
            headers=headers_for(guest),
        )
        assert response.status_code == 201
        listing = response.json()["data"]["property"]
        assert listing["ownerId"] == guest.id
        assert listing["price"] == 1500.5
        assert listing["location"] == {"barangay": "San Antonio", "city": "Pasig", "province": "Metro Manila"}
        assert len(listing["pictures"]) == 2
        for key in listing["pictures"]:
            assert os.path.exists(upload_path(key))

    def test_uploaded_picture_is_served(self, properties_client, guest, headers_for):
        listing = create_listing(properties_client, headers_for(guest))
        response = properties_client.get(f"/uploads/{listing['pictures'][0]}")
        assert response.status_code == 200
        assert response.content == PNG

    def test_requires_a_picture(self, properties_client, guest, headers_for, db_session):
        response = properties_client.post("/properties", data=LISTING_FORM, headers=headers_for(guest))
        assert response.status_code == 400
        assert "picture" in response.json()["message"]
        assert db_session.query(Property).count() == 0

    def test_rejects_non_image_upload(self, properties_client, guest, headers_for, db_session):
        response = properties_client.post(
            "/properties",
            data=LISTING_FORM,
            files=[picture("notes.txt", b"hello", "text/plain")],
            headers=headers_for(guest),
        )
        assert response.status_code == 400
        assert db_session.query(Property).count() == 0

    def test_missing_fields_named(self, properties_client, guest, headers_for):
        form = {key: value for key, value in LISTING_FORM.items() if key not in ("name", "city")}
        response = properties_client.post("/properties", data=form, files=[picture()], headers=headers_for(guest))
        assert response.status_code == 400
        message = response.json()["message"]
        assert "Missing required fields" in message
        assert "name" in message
        assert "city" in message

    def test_anonymous_cannot_create(self, properties_client):
        response = properties_client.post("/properties", data=LISTING_FORM, files=[picture()])
        assert response.status_code == 401


class TestBrowseProperties:
    def test_public_list_hides_disabled(self, properties_client, make_property, admin, headers_for):
        make_property(admin, name="Visible")
        make_property(admin, name="Hidden", disabled=True)

        data = properties_client.get("/properties").json()["data"]
        assert [p["name"] for p in data["properties"]] == ["Visible"]

        with_disabled = properties_client.get(
            "/properties", params={"includeDisabled": "true"}, headers=headers_for(admin)
        ).json()["data"]
        assert with_disabled["pagination"]["totalItems"] == 2

    def test_include_disabled_ignored_for_non_admin(self, properties_client, make_property, admin, guest, headers_for):
        make_property(admin, disabled=True)
        data = properties_client.get(
            "/properties", params={"includeDisabled": "true"}, headers=headers_for(guest)
        ).json()["data"]
        assert data["pagination"]["totalItems"] == 0

    def test_filters(self, properties_client, make_property, admin):
        make_property(admin, name="Budget Room", price="500")
        make_property(admin, name="Luxury Suite", price="5000")

        cheap = properties_client.get("/properties", params={"maxPrice": 1000}).json()["data"]["properties"]
        assert [p["name"] for p in cheap] == ["Budget Room"]
        found = properties_client.get("/properties", params={"search": "luxury"}).json()["data"]["properties"]
        assert [p["name"] for p in found] == ["Luxury Suite"]
        by_city = properties_client.get("/properties", params={"city": "makati"}).json()["data"]
        assert by_city["pagination"]["totalItems"] == 2

    def test_exclude_booked(self, properties_client, make_property, admin, guest, db_session):
        booked = make_property(admin, name="Booked")
        make_property(admin, name="Free")
        start = datetime(2030, 1, 1)
        db_session.add(
            Booking(
                guest_id=guest.id,
                property_id=booked.id,
                check_in=start,
                check_out=start + timedelta(days=1),
                nights=1,
                amount=100,
                status=BookingStatus.APPROVED,
            )
        )
        db_session.commit()

        names = [p["name"] for p in properties_client.get("/properties", params={"excludeBooked": "true"}).json()["data"]["properties"]]
        assert names == ["Free"]

    def test_disabled_listing_hidden_from_others(self, properties_client, make_property, make_user, guest, headers_for):
        owner = make_user()
        listing = make_property(owner, disabled=True)
        assert properties_client.get(f"/properties/{listing.id}").status_code == 404
        assert properties_client.get(f"/properties/{listing.id}", headers=headers_for(guest)).status_code == 404
        assert properties_client.get(f"/properties/{listing.id}", headers=headers_for(owner)).status_code == 200

    def test_mine(self, properties_client, make_property, make_user, guest, headers_for):
        make_property(guest, name="Mine", disabled=True)
        make_property(make_user(), name="Theirs")
        data = properties_client.get("/properties/mine", headers=headers_for(guest)).json()["data"]
        assert [p["name"] for p in data["properties"]] == ["Mine"]


class TestUpdateProperty:
    def test_owner_updates_fields_and_adds_picture(self, properties_client, guest, headers_for):
        listing = create_listing(properties_client, headers_for(guest))
        response = properties_client.put(
            f"/properties/{listing['id']}",
            data={"price": "999", "city": "Taguig"},
            files=[picture("extra.png")],
            headers=headers_for(guest),
        )
        assert response.status_code == 200
        updated = response.json()["data"]["property"]
        assert updated["price"] == 999
        assert updated["location"]["city"] == "Taguig"
        assert updated["location"]["barangay"] == "San Antonio"
        assert len(updated["pictures"]) == 2

    def test_removing_last_picture_rejected(self, properties_client, guest, headers_for, db_session):
        listing = create_listing(properties_client, headers_for(guest))
        key = listing["pictures"][0]
        response = properties_client.put(
            f"/properties/{listing['id']}", data={"removePictures": key}, headers=headers_for(guest)
        )
        assert response.status_code == 400
        assert db_session.get(Property, listing["id"]).pictures == [key]
        assert os.path.exists(upload_path(key))

    def test_replacing_picture_deletes_old_blob(self, properties_client, guest, headers_for):
        listing = create_listing(properties_client, headers_for(guest))
        old_key = listing["pictures"][0]
        response = properties_client.put(
            f"/properties/{listing['id']}",
            data={"removePictures": f'["{old_key}"]'},
            files=[picture("new.png")],
            headers=headers_for(guest),
        )
        assert response.status_code == 200
        pictures = response.json()["data"]["property"]["pictures"]
        assert old_key not in pictures
        assert len(pictures) == 1
        assert not os.path.exists(upload_path(old_key))

    def test_admin_can_disable_any_listing(self, properties_client, make_property, make_user, admin, headers_for):
        listing = make_property(make_user())
        response = properties_client.put(
            f"/properties/{listing.id}", data={"disabled": "true"}, headers=headers_for(admin)
        )
        assert response.status_code == 200
        assert response.json()["data"]["property"]["disabled"] is True

    def test_stranger_cannot_update(self, properties_client, make_property, make_user, guest, headers_for):
        listing = make_property(make_user())
        response = properties_client.put(f"/properties/{listing.id}", data={"name": "Mine now"}, headers=headers_for(guest))
        assert response.status_code == 403


class TestFailedWritesReleaseUploads:
    """Pictures saved for a request are removed again when the database write fails."""

    @staticmethod
    def fail_commits(monkeypatch):
        def commit(self):
            raise SQLAlchemyError("database unavailable")

        monkeypatch.setattr(Session, "commit", commit)

    def test_create_failure_leaves_no_files(self, properties_client, guest, headers_for, db_session, monkeypatch):
        headers = headers_for(guest)
        before = set(os.listdir(get_settings().upload_dir))
        self.fail_commits(monkeypatch)

        response = properties_client.post("/properties", data=LISTING_FORM, files=[picture()], headers=headers)
        monkeypatch.undo()

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert set(os.listdir(get_settings().upload_dir)) == before
        assert db_session.query(Property).count() == 0

    def test_update_failure_keeps_pictures(self, properties_client, guest, headers_for, db_session, monkeypatch):
        headers = headers_for(guest)
        listing = create_listing(properties_client, headers)
        key = listing["pictures"][0]
        before = set(os.listdir(get_settings().upload_dir))
        self.fail_commits(monkeypatch)

        response = properties_client.put(
            f"/properties/{listing['id']}",
            data={"removePictures": key},
            files=[picture("replacement.png")],
            headers=headers,
        )
        monkeypatch.undo()

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert set(os.listdir(get_settings().upload_dir)) == before
        assert os.path.exists(upload_path(key))
        db_session.expire_all()
        assert db_session.get(Property, listing["id"]).pictures == [key]


class TestDeleteProperty:
    def test_delete_removes_blobs_and_bookings(self, properties_client, guest, headers_for, db_session):
        listing = create_listing(properties_client, headers_for(guest))
        key = listing["pictures"][0]
        start = datetime(2030, 2, 1)
        db_session.add(
            Booking(
                guest_id=guest.id,
                property_id=listing["id"],
                check_in=start,
                check_out=start + timedelta(days=1),
                nights=1,
                amount=100,
            )
        )
        db_session.commit()

        response = properties_client.delete(f"/properties/{listing['id']}", headers=headers_for(guest))
        assert response.status_code == 200
        assert not os.path.exists(upload_path(key))
        assert db_session.query(Booking).count() == 0
        assert properties_client.get(f"/properties/{listing['id']}").status_code == 404

    def test_stranger_cannot_delete(self, properties_client, make_property, make_user, guest, headers_for):
        listing = make_property(make_user())
        assert properties_client.delete(f"/properties/{listing.id}", headers=headers_for(guest)).status_code == 403


class TestPropertyStats:
    def test_stats_are_cached_until_a_write(self, properties_client, make_property, admin, headers_for):
        make_property(admin)
        first = properties_client.get("/properties/stats", headers=headers_for(admin)).json()["data"]["stats"]
        assert first["total"] == 1
        assert first["byCategory"]["Apartment"] == 1
        assert first["recentProperties"] == 1

        make_property(admin, disabled=True)
        cached = properties_client.get("/properties/stats", headers=headers_for(admin)).json()["data"]["stats"]
        assert cached["total"] == 1

        create_listing(properties_client, headers_for(admin))
        fresh = properties_client.get("/properties/stats", headers=headers_for(admin)).json()["data"]["stats"]
        assert fresh["total"] == 3
        assert fresh["disabled"] == 1
        assert fresh["enabled"] == 2

    def test_stats_admin_only(self, properties_client, guest, headers_for):
        assert properties_client.get("/properties/stats", headers=headers_for(guest)).status_code == 403
