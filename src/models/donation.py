"""
Donation record and the value types around it.

Rows are stored with snake_case column names in the `food_donations` table
and every timestamp is serialised as an ISO-8601 UTC string.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from enum import Enum
from typing import Any

from src.utils.errors import ValidationError

MICROSECONDS_PER_HOUR = 3_600_000_000

_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


class DonationStatus(str, Enum):
    AVAILABLE = "available"
    CLAIMED = "claimed"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: Any) -> "DonationStatus":
        if isinstance(value, cls):
            return value
        normalised = _STATUS_ALIASES.get(str(value or "").strip().lower())
        if normalised is None:
            raise ValueError(f"Unknown donation status: {value!r}")
        return normalised


TERMINAL_STATUSES = frozenset({DonationStatus.COMPLETED, DonationStatus.EXPIRED})

# Older dashboards wrote "picked-up", "assigned" and "pending".
_STATUS_ALIASES = {s.value: s for s in DonationStatus}
_STATUS_ALIASES.update({
    "picked-up": DonationStatus.PICKED_UP,
    "assigned": DonationStatus.CLAIMED,
    "pending": DonationStatus.AVAILABLE,
})


class ActorRole(str, Enum):
    DONOR = "donor"
    NGO = "ngo"
    RIDER = "rider"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value: Any) -> "ActorRole":
        if isinstance(value, cls):
            return value
        raw = str(value or "").strip().lower()
        if raw == "user":
            return cls.DONOR
        return cls(raw)


# ─────────────────────────────────────────────
# Timestamp helpers
# ─────────────────────────────────────────────
def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z") or raw.endswith("z"):
            raw = raw[:-1] + "+00:00"
        # Postgres trims trailing zeros; fromisoformat on 3.10 wants 3 or 6 digits.
        raw = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), raw, count=1)
        parsed = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"Not a timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_optional_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return parse_timestamp(value)


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_shelf_life_hours(value: Any) -> Decimal:
    """Validate a shelf life and return it as an exact Decimal."""
    if isinstance(value, bool) or value is None:
        raise ValidationError("shelfLifeHours must be a positive number")
    try:
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValidationError("shelfLifeHours must be finite")
            hours = Decimal(repr(value))
        else:
            hours = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("shelfLifeHours must be a positive number")

    if not hours.is_finite():
        raise ValidationError("shelfLifeHours must be finite")
    if hours <= 0:
        raise ValidationError("shelfLifeHours must be greater than zero")
    return hours


def compute_expiry(cooked_time: datetime, shelf_life_hours: Any) -> datetime:
    """cooked_time + shelf_life_hours, using whole-microsecond arithmetic."""
    hours = parse_shelf_life_hours(shelf_life_hours)
    micros = (hours * MICROSECONDS_PER_HOUR).to_integral_value(rounding=ROUND_HALF_EVEN)
    try:
        return cooked_time + timedelta(microseconds=int(micros))
    except OverflowError:
        raise ValidationError("shelfLifeHours is too large for the given cookedTime") from None


# ─────────────────────────────────────────────
# Record
# ─────────────────────────────────────────────
_TIMESTAMP_FIELDS = (
    "cooked_time",
    "expiry_date_time",
    "pickup_time",
    "created_at",
    "updated_at",
    "completed_at",
)


@dataclass
class Donation:
    donor_id: str
    food_type: str
    quantity: Any
    address: str
    cooked_time: datetime
    shelf_life_hours: float
    expiry_date_time: datetime
    status: DonationStatus = DonationStatus.AVAILABLE
    notes: str = ""
    donor_name: str | None = None
    contact_number: str | None = None
    pickup_time: datetime | None = None
    assigned_rider: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    id: str | None = field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _TIMESTAMP_FIELDS:
                value = format_timestamp(value)
            elif isinstance(value, Enum):
                value = value.value
            row[f.name] = value
        return row

    def to_dict(self) -> dict[str, Any]:
        return self.to_row()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Donation":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in row.items() if k in known}
        for name in _TIMESTAMP_FIELDS:
            if name in data:
                data[name] = parse_optional_timestamp(data[name])
        data["status"] = DonationStatus.parse(data.get("status") or "available")
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        return cls(**data)


def apply_patch(donation: Donation, patch: dict[str, Any]) -> Donation:
    """Return a copy of `donation` with a storage-style patch applied."""
    row = donation.to_row()
    row.update({
        k: (format_timestamp(v) if isinstance(v, datetime) else v.value if isinstance(v, Enum) else v)
        for k, v in patch.items()
    })
    return Donation.from_row(row)
