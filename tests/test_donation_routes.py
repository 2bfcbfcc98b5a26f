"""
Tests for the Flask donation blueprint:
- POST /api/donations
- GET  /api/donations
- GET  /api/donations/<id>
- PUT  /api/donations/<id>/status
- GET  /api/rider/pickup-requests
- PUT  /api/donations/auto-expire
"""

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app import create_app
from conftest import JWT_SECRET, T0
from src.utils.errors import StorageError
from src.utils.mail_instance import mail


def body(response):
    return json.loads(response.data)


@pytest.fixture
def donor(auth_header):
    return auth_header("donor-1", "user", email="donor1@foodlink.test")


@pytest.fixture
def ngo(auth_header):
    return auth_header("ngo-1", "ngo")


@pytest.fixture
def rider(auth_header):
    return auth_header("rider-1", "rider")


@pytest.fixture
def create(client, donor, donation_fields):
    def make(**overrides):
        response = client.post("/api/donations", json=donation_fields(**overrides), headers=donor)
        assert response.status_code == 201, response.data
        return body(response)["donation"]

    return make


# =============================================================================
# Auth
# =============================================================================

class TestAuth:

    def test_missing_token(self, client):
        response = client.get("/api/donations")
        assert response.status_code == 401
        assert "error" in body(response)

    def test_invalid_token(self, client):
        response = client.get("/api/donations", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_expired_token(self, client, auth_header):
        headers = auth_header("donor-1", "donor", expires_in=timedelta(minutes=-1))
        assert client.get("/api/donations", headers=headers).status_code == 401

    def test_wrong_role(self, client, rider, donation_fields):
        response = client.post("/api/donations", json=donation_fields(), headers=rider)
        assert response.status_code == 403

    def test_unknown_role(self, client, auth_header):
        response = client.get("/api/donations", headers=auth_header("x", "superhero"))
        assert response.status_code == 403


# =============================================================================
# Create
# =============================================================================

class TestCreateDonation:

    def test_creates_with_computed_expiry(self, client, donor, donation_fields):
        response = client.post("/api/donations", json=donation_fields(shelfLifeHours=2), headers=donor)

        assert response.status_code == 201
        data = body(response)["donation"]
        assert data["status"] == "available"
        assert data["donor_id"] == "donor-1"
        assert data["expiry_date_time"] == (T0 + timedelta(hours=2)).isoformat()

    def test_sends_confirmation_email(self, app, client, donor, donation_fields):
        with mail.record_messages() as outbox:
            client.post("/api/donations", json=donation_fields(), headers=donor)

        assert len(outbox) == 1
        assert outbox[0].recipients == ["donor1@foodlink.test"]
        assert "Cooked Rice & Dal" in outbox[0].body

    def test_validation_error(self, client, donor, donation_fields):
        response = client.post("/api/donations", json=donation_fields(shelfLifeHours=0), headers=donor)
        assert response.status_code == 400
        assert "shelfLifeHours" in body(response)["error"]

    @pytest.mark.parametrize("overrides", [
        {"shelfLifeHours": 1e12},
        {"cookedTime": "9999-12-31T23:00:00Z", "shelfLifeHours": 2},
    ])
    def test_out_of_range_expiry_is_rejected(self, client, donor, donation_fields, overrides):
        response = client.post("/api/donations", json=donation_fields(**overrides), headers=donor)
        assert response.status_code == 400
        assert "too large" in body(response)["error"]

    def test_unparsable_cooked_time(self, client, donor, donation_fields):
        response = client.post("/api/donations", json=donation_fields(cookedTime="tonight"), headers=donor)
        assert response.status_code == 400

    def test_empty_body(self, client, donor):
        response = client.post("/api/donations", data="not json", headers=donor)
        assert response.status_code == 400
        assert "Missing required fields" in body(response)["error"]


# =============================================================================
# Transitions
# =============================================================================

class TestStatusUpdates:

    def test_rider_lifecycle(self, client, create, rider):
        donation_id = create()["id"]

        for status in ("claimed", "picked_up", "completed"):
            response = client.put(f"/api/donations/{donation_id}/status", json={"status": status}, headers=rider)
            assert response.status_code == 200, response.data
            assert body(response)["data"]["status"] == status

        data = body(client.get(f"/api/donations/{donation_id}", headers=rider))["data"]
        assert data["assigned_rider"] == "rider-1"
        assert data["completed_at"] is not None

    def test_ngo_assigns_rider(self, client, create, ngo):
        donation_id = create()["id"]
        response = client.put(
            f"/api/donations/{donation_id}/status",
            json={"status": "claimed", "riderId": "rider-9"},
            headers=ngo,
        )
        assert body(response)["data"]["assigned_rider"] == "rider-9"

    def test_unassigned_claim_belongs_to_rider_who_picks_up(self, client, create, ngo, auth_header):
        donation_id = create()["id"]
        rider_2 = auth_header("rider-2", "rider")
        rider_3 = auth_header("rider-3", "rider")
        url = f"/api/donations/{donation_id}/status"

        assert client.put(url, json={"status": "claimed"}, headers=ngo).status_code == 200
        picked = client.put(url, json={"status": "picked_up"}, headers=rider_2)
        assert body(picked)["data"]["assigned_rider"] == "rider-2"

        assert client.put(url, json={"status": "completed"}, headers=rider_3).status_code == 409
        requests = body(client.get("/api/rider/pickup-requests", headers=rider_2))["requests"]
        assert donation_id in [d["id"] for d in requests]

    def test_skipping_claimed_is_a_conflict(self, client, create, rider):
        donation_id = create()["id"]
        response = client.put(f"/api/donations/{donation_id}/status", json={"status": "picked_up"}, headers=rider)
        assert response.status_code == 409
        assert "available" in body(response)["error"]

    def test_second_claim_is_a_conflict(self, client, create, rider, auth_header):
        donation_id = create()["id"]
        first = client.put(f"/api/donations/{donation_id}/status", json={"status": "claimed"}, headers=rider)
        second = client.put(
            f"/api/donations/{donation_id}/status",
            json={"status": "claimed"},
            headers=auth_header("rider-2", "rider"),
        )
        assert first.status_code == 200
        assert second.status_code == 409

    def test_status_required(self, client, create, rider):
        donation_id = create()["id"]
        response = client.put(f"/api/donations/{donation_id}/status", json={}, headers=rider)
        assert response.status_code == 400

    def test_unknown_donation(self, client, rider):
        response = client.put("/api/donations/missing/status", json={"status": "claimed"}, headers=rider)
        assert response.status_code == 404

    def test_donor_cannot_transition(self, client, create, donor):
        donation_id = create()["id"]
        response = client.put(f"/api/donations/{donation_id}/status", json={"status": "claimed"}, headers=donor)
        assert response.status_code == 403


# =============================================================================
# Listings
# =============================================================================

class TestListings:

    def test_donor_sees_own_newest_first(self, client, create, clock, donor, auth_header):
        first = create(foodType="First")
        clock.advance(minutes=1)
        second = create(foodType="Second")
        other = client.post(
            "/api/donations",
            json={"foodType": "Other", "quantity": 1, "address": "x", "cookedTime": T0.isoformat(), "shelfLifeHours": 1},
            headers=auth_header("donor-2", "donor"),
        )
        assert other.status_code == 201

        data = body(client.get("/api/donations", headers=donor))["data"]
        assert [d["id"] for d in data] == [second["id"], first["id"]]

    def test_status_filter(self, client, create, ngo, rider):
        claimed_id = create()["id"]
        create()
        client.put(f"/api/donations/{claimed_id}/status", json={"status": "claimed"}, headers=rider)

        data = body(client.get("/api/donations?status=claimed", headers=ngo))["data"]
        assert [d["id"] for d in data] == [claimed_id]

    def test_bad_status_filter(self, client, ngo):
        response = client.get("/api/donations?status=lost", headers=ngo)
        assert response.status_code == 400

    def test_rider_pickup_requests(self, client, create, rider, auth_header):
        mine = create()["id"]
        theirs = create()["id"]
        open_id = create()["id"]
        client.put(f"/api/donations/{mine}/status", json={"status": "claimed"}, headers=rider)
        client.put(
            f"/api/donations/{theirs}/status",
            json={"status": "claimed"},
            headers=auth_header("rider-2", "rider"),
        )

        response = client.get("/api/rider/pickup-requests", headers=rider)
        assert response.status_code == 200
        ids = {d["id"] for d in body(response)["requests"]}
        assert ids == {mine, open_id}

    def test_get_unknown(self, client, ngo):
        assert client.get("/api/donations/nope", headers=ngo).status_code == 404


# =============================================================================
# Expiry
# =============================================================================

class TestAutoExpire:

    def test_manual_sweep(self, client, create, clock, ngo, rider):
        stale = create()["id"]
        claimed = create()["id"]
        client.put(f"/api/donations/{claimed}/status", json={"status": "claimed"}, headers=rider)

        clock.advance(hours=3)
        response = client.put("/api/donations/auto-expire", headers=ngo)
        assert response.status_code == 200
        assert body(response)["expired"] == 1

        assert body(client.get(f"/api/donations/{stale}", headers=ngo))["data"]["status"] == "expired"
        assert body(client.get(f"/api/donations/{claimed}", headers=ngo))["data"]["status"] == "claimed"

        again = client.put("/api/donations/auto-expire", headers=ngo)
        assert body(again)["expired"] == 0

    def test_claiming_after_expiry_conflicts(self, client, create, clock, ngo, rider):
        donation_id = create()["id"]
        clock.advance(hours=3)
        client.put("/api/donations/auto-expire", headers=ngo)

        response = client.put(f"/api/donations/{donation_id}/status", json={"status": "claimed"}, headers=rider)
        assert response.status_code == 409
        assert "expired" in body(response)["error"]

    def test_riders_cannot_sweep(self, client, rider):
        assert client.put("/api/donations/auto-expire", headers=rider).status_code == 403


# =============================================================================
# App wiring
# =============================================================================

class TestAppWiring:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert body(response) == {"status": "ok", "store": "memory"}

    def test_storage_failure_is_generic_503(self, clock, auth_header):
        store = MagicMock()
        store.kind = "broken"
        store.find_many.side_effect = StorageError("Supabase request failed: secret detail")
        app = create_app({"TESTING": True, "JWT_SECRET": JWT_SECRET}, store=store, clock=clock)

        response = app.test_client().get("/api/donations", headers=auth_header("ngo-1", "ngo"))
        assert response.status_code == 503
        assert "secret detail" not in body(response)["error"]

    def test_cors_headers_on_errors(self, client):
        response = client.get("/api/donations", headers={"Origin": "http://localhost:3000"})
        assert response.status_code == 401
        assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"

    def test_preflight(self, client):
        response = client.options("/api/donations", headers={"Origin": "http://localhost:3000"})
        assert response.status_code == 200
