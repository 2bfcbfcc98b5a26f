"""
Donation Record Manager.

Owns creation (with server-computed expiry), the transition table, and
role-scoped listing. Every status write is conditional on the status the
record had when it was read, so a transition that loses a race against
another transition or the expiry sweep fails with InvalidTransitionError
instead of overwriting the winner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator

from src.models.donation import (
    ActorRole,
    Donation,
    DonationStatus,
    apply_patch,
    compute_expiry,
    parse_optional_timestamp,
    parse_shelf_life_hours,
    parse_timestamp,
)
from src.services.donation_store import DonationFilter, DonationStore
from src.utils.clock import SystemClock
from src.utils.errors import InvalidTransitionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

S = DonationStatus
R = ActorRole

# (from, to) -> roles allowed to take that edge
TRANSITIONS: dict[tuple[DonationStatus, DonationStatus], frozenset[ActorRole]] = {
    (S.AVAILABLE, S.CLAIMED): frozenset({R.NGO, R.RIDER}),
    (S.CLAIMED, S.PICKED_UP): frozenset({R.RIDER}),
    (S.PICKED_UP, S.COMPLETED): frozenset({R.RIDER, R.NGO}),
    (S.AVAILABLE, S.EXPIRED): frozenset({R.SYSTEM}),
    (S.CLAIMED, S.EXPIRED): frozenset({R.SYSTEM}),
}

OPERATIVE_STATUSES = frozenset({S.AVAILABLE, S.CLAIMED, S.PICKED_UP})

# Accepts both the snake_case columns and the camelCase form fields.
_FIELD_ALIASES = {
    "food_type": ("food_type", "foodType"),
    "quantity": ("quantity",),
    "address": ("address",),
    "notes": ("notes",),
    "cooked_time": ("cooked_time", "cookedTime"),
    "shelf_life_hours": ("shelf_life_hours", "shelfLifeHours"),
    "donor_name": ("donor_name", "donorName"),
    "contact_number": ("contact_number", "contactNumber"),
    "pickup_time": ("pickup_time", "pickupTime"),
}

REQUIRED_FIELDS = ("food_type", "quantity", "address", "cooked_time", "shelf_life_hours")


def is_legal(current: DonationStatus, target: DonationStatus, role: ActorRole) -> bool:
    return role in TRANSITIONS.get((current, target), frozenset())


@dataclass(frozen=True)
class TransitionContext:
    actor_id: str | None = None
    rider_id: str | None = None


@dataclass(frozen=True)
class QueryFilters:
    actor_id: str | None = None
    status: DonationStatus | None = None


class DonationQuery:
    """Lazy, restartable view over a role-scoped listing.

    Each iteration reads storage again, newest first.
    """

    def __init__(self, store: DonationStore, criteria: list[DonationFilter]):
        self._store = store
        self._criteria = criteria

    def __iter__(self) -> Iterator[Donation]:
        if len(self._criteria) == 1:
            yield from self._store.find_many(self._criteria[0])
            return

        merged: dict[str, Donation] = {}
        for criteria in self._criteria:
            for donation in self._store.find_many(criteria):
                merged[donation.id] = donation
        yield from sorted(merged.values(), key=lambda d: d.created_at, reverse=True)


class DonationManager:
    def __init__(self, store: DonationStore, clock=None):
        self.store = store
        self.clock = clock or SystemClock()

    # ─────────────────────────────────────────────
    # ➕ Create
    # ─────────────────────────────────────────────
    def create(self, donor_id: str, fields: dict[str, Any]) -> Donation:
        if not donor_id or not str(donor_id).strip():
            raise ValidationError("donorId is required")

        values = _normalise_fields(fields or {})

        missing = [name for name in REQUIRED_FIELDS if _is_blank(values.get(name))]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        try:
            cooked_time = parse_timestamp(values["cooked_time"])
        except (TypeError, ValueError):
            raise ValidationError("cookedTime is not a valid timestamp")

        try:
            pickup_time = parse_optional_timestamp(values.get("pickup_time"))
        except (TypeError, ValueError):
            raise ValidationError("pickupTime is not a valid timestamp")

        hours = parse_shelf_life_hours(values["shelf_life_hours"])
        now = self.clock.now()

        donation = Donation(
            donor_id=str(donor_id),
            food_type=str(values["food_type"]).strip(),
            quantity=values["quantity"],
            address=str(values["address"]).strip(),
            notes=values.get("notes") or "",
            donor_name=values.get("donor_name"),
            contact_number=values.get("contact_number"),
            pickup_time=pickup_time,
            cooked_time=cooked_time,
            shelf_life_hours=float(hours),
            expiry_date_time=compute_expiry(cooked_time, hours),
            status=DonationStatus.AVAILABLE,
            created_at=now,
            updated_at=now,
        )

        donation_id = self.store.insert(donation)
        logger.info("✅ Donation %s created by donor %s, expires %s",
                    donation_id, donor_id, donation.expiry_date_time.isoformat())
        return apply_patch(donation, {"id": donation_id})

    # ─────────────────────────────────────────────
    # 🔍 Read
    # ─────────────────────────────────────────────
    def get(self, donation_id: str) -> Donation:
        donation = self.store.find_by_id(donation_id)
        if donation is None:
            raise NotFoundError(f"Donation {donation_id} not found")
        return donation

    def query(self, actor_role, filters: QueryFilters | None = None) -> DonationQuery:
        role = ActorRole.parse(actor_role)
        filters = filters or QueryFilters()
        wanted = {filters.status} if filters.status is not None else None

        def narrowed(statuses):
            if wanted is None:
                return statuses
            return frozenset(statuses & wanted) if statuses is not None else frozenset(wanted)

        if role is ActorRole.DONOR:
            if not filters.actor_id:
                raise ValidationError("Donor listings need the donor's id")
            criteria = [DonationFilter(statuses=narrowed(None), donor_id=filters.actor_id)]
        elif role is ActorRole.NGO:
            criteria = [DonationFilter(statuses=narrowed(OPERATIVE_STATUSES))]
        elif role is ActorRole.RIDER:
            criteria = [DonationFilter(statuses=narrowed(frozenset({S.AVAILABLE})))]
            if filters.actor_id:
                criteria.append(DonationFilter(
                    statuses=narrowed(frozenset({S.CLAIMED, S.PICKED_UP})),
                    assigned_rider=filters.actor_id,
                ))
        else:
            criteria = [DonationFilter(statuses=narrowed(None))]

        # An empty status set can never match; skip the round trip.
        criteria = [c for c in criteria if c.statuses is None or c.statuses]
        return DonationQuery(self.store, criteria)

    # ─────────────────────────────────────────────
    # 🔁 Transition
    # ─────────────────────────────────────────────
    def transition(self, donation_id: str, actor_role, target_status, context: TransitionContext | None = None) -> Donation:
        context = context or TransitionContext()
        try:
            role = ActorRole.parse(actor_role)
        except ValueError:
            raise InvalidTransitionError(f"Unknown actor role: {actor_role!r}")
        try:
            target = DonationStatus.parse(target_status)
        except ValueError:
            raise InvalidTransitionError(f"Unknown donation status: {target_status!r}")

        current = self.get(donation_id)

        if current.is_terminal:
            raise InvalidTransitionError(
                f"Donation is already {current.status.value} and can no longer change"
            )
        if not is_legal(current.status, target, role):
            raise InvalidTransitionError(
                f"A {role.value} cannot move a donation from {current.status.value} to {target.value}"
            )

        patch = self._build_patch(current, target, role, context)

        if not self.store.conditional_update(donation_id, current.status, patch):
            latest = self.store.find_by_id(donation_id)
            latest_status = latest.status.value if latest else "missing"
            logger.info("Transition %s -> %s on %s lost to a concurrent update (now %s)",
                        current.status.value, target.value, donation_id, latest_status)
            raise InvalidTransitionError(
                f"Donation changed to {latest_status} before it could be marked {target.value}"
            )

        logger.info("🔁 Donation %s: %s -> %s by %s",
                    donation_id, current.status.value, target.value, role.value)
        return apply_patch(current, patch)

    def _build_patch(self, current: Donation, target: DonationStatus, role: ActorRole,
                     context: TransitionContext) -> dict[str, Any]:
        now = self.clock.now()
        patch: dict[str, Any] = {"status": target, "updated_at": now}

        if target is S.CLAIMED:
            rider = context.actor_id if role is R.RIDER else context.rider_id
            if role is R.RIDER and not rider:
                raise InvalidTransitionError("A rider claim needs the rider's id")
            patch["assigned_rider"] = rider

        elif target in (S.PICKED_UP, S.COMPLETED) and role is R.RIDER:
            if current.assigned_rider and current.assigned_rider != context.actor_id:
                raise InvalidTransitionError("This donation is assigned to another rider")
            if current.assigned_rider is None:
                # NGO claimed without naming a rider; whoever picks it up owns it.
                if not context.actor_id:
                    raise InvalidTransitionError("A rider pickup needs the rider's id")
                patch["assigned_rider"] = context.actor_id

        if target is S.COMPLETED:
            patch["completed_at"] = now
        return patch


def _normalise_fields(fields: dict[str, Any]) -> dict[str, Any]:
    values = {}
    for name, aliases in _FIELD_ALIASES.items():
        for alias in aliases:
            if alias in fields:
                values[name] = fields[alias]
                break
    return values


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False
