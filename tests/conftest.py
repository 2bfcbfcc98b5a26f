"""
Shared pytest fixtures.

Everything runs against the in-memory store and a FixedClock, so expiry
behaviour is deterministic and no Supabase project is needed.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from src.services.donation_lifecycle import DonationManager
from src.services.donation_store import InMemoryDonationStore
from src.services.expiry_sweeper import ExpirySweeper
from src.utils.clock import FixedClock

JWT_SECRET = "test-secret"

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _no_remote_audit(monkeypatch):
    """Keep audit events local."""
    from src.utils import audit_log

    monkeypatch.setattr(audit_log.config, "DONATION_STORE", "memory")


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def store():
    return InMemoryDonationStore()


@pytest.fixture
def manager(store, clock):
    return DonationManager(store, clock)


@pytest.fixture
def sweeper(store, clock):
    return ExpirySweeper(store, clock)


@pytest.fixture
def donation_fields():
    def make(**overrides):
        fields = {
            "foodType": "Cooked Rice & Dal",
            "quantity": 40,
            "address": "123, Sampatrao Colony, Jagnath Plot",
            "notes": "Packed in steel containers",
            "cookedTime": T0.isoformat(),
            "shelfLifeHours": 2,
        }
        fields.update(overrides)
        return fields

    return make


@pytest.fixture
def app(store, clock):
    from app import create_app

    app = create_app(
        config_overrides={
            "TESTING": True,
            "JWT_SECRET": JWT_SECRET,
            "MAIL_DEFAULT_SENDER": "noreply@foodlink.test",
            "ENABLE_SCHEDULER": False,
        },
        store=store,
        clock=clock,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def make_token(user_id, role, email=None, expires_in=timedelta(minutes=15)):
    payload = {
        "user_id": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    if email:
        payload["email"] = email
        payload["name"] = user_id.title()
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


@pytest.fixture
def auth_header():
    def make(user_id, role, **kwargs):
        return {"Authorization": f"Bearer {make_token(user_id, role, **kwargs)}"}

    return make
