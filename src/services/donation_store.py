"""
Storage interface for donation records.

Every status change goes through `conditional_update` or
`bulk_conditional_update`, which only apply a patch while the record is
still in the expected status. That precondition is what keeps concurrent
transitions and the expiry sweep from overwriting each other.
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Iterator

from src.models.donation import Donation, DonationStatus, apply_patch

DEFAULT_SORT = ("created_at", True)


@dataclass(frozen=True)
class DonationFilter:
    statuses: frozenset[DonationStatus] | None = None
    donor_id: str | None = None
    assigned_rider: str | None = None
    expires_before: datetime | None = None

    @classmethod
    def of(cls, statuses: Iterable[DonationStatus] | None = None, **kwargs) -> "DonationFilter":
        return cls(statuses=frozenset(statuses) if statuses is not None else None, **kwargs)

    def matches(self, donation: Donation) -> bool:
        if self.statuses is not None and donation.status not in self.statuses:
            return False
        if self.donor_id is not None and donation.donor_id != self.donor_id:
            return False
        if self.assigned_rider is not None and donation.assigned_rider != self.assigned_rider:
            return False
        if self.expires_before is not None and not donation.expiry_date_time < self.expires_before:
            return False
        return True


class DonationStore(ABC):
    """Persistence collaborator used by the manager and the sweeper."""

    kind = "abstract"

    @abstractmethod
    def insert(self, donation: Donation) -> str:
        ...

    @abstractmethod
    def find_by_id(self, donation_id: str) -> Donation | None:
        ...

    @abstractmethod
    def find_many(self, criteria: DonationFilter, sort: tuple[str, bool] = DEFAULT_SORT) -> Iterator[Donation]:
        ...

    @abstractmethod
    def conditional_update(self, donation_id: str, expected_status: DonationStatus, patch: dict[str, Any]) -> bool:
        """Apply `patch` only if the record is still in `expected_status`."""

    @abstractmethod
    def bulk_conditional_update(self, criteria: DonationFilter, patch: dict[str, Any]) -> int:
        """Apply `patch` to every record matching `criteria`; return how many changed."""


class InMemoryDonationStore(DonationStore):
    """Dict-backed store with a status index, safe to share across threads."""

    kind = "memory"

    def __init__(self):
        self._records: dict[str, Donation] = {}
        self._by_status: dict[DonationStatus, set[str]] = defaultdict(set)
        self._lock = threading.RLock()

    def __len__(self):
        return len(self._records)

    def insert(self, donation: Donation) -> str:
        donation_id = donation.id or uuid.uuid4().hex
        with self._lock:
            if donation_id in self._records:
                raise KeyError(f"Duplicate donation id {donation_id}")
            stored = apply_patch(donation, {"id": donation_id})
            self._records[donation_id] = stored
            self._by_status[stored.status].add(donation_id)
        return donation_id

    def find_by_id(self, donation_id: str) -> Donation | None:
        with self._lock:
            record = self._records.get(donation_id)
            return apply_patch(record, {}) if record is not None else None

    def find_many(self, criteria: DonationFilter, sort: tuple[str, bool] = DEFAULT_SORT) -> Iterator[Donation]:
        with self._lock:
            snapshot = [apply_patch(r, {}) for r in self._candidates(criteria) if criteria.matches(r)]
        field_name, descending = sort
        snapshot.sort(key=lambda d: _sort_key(getattr(d, field_name)), reverse=descending)
        yield from snapshot

    def conditional_update(self, donation_id: str, expected_status: DonationStatus, patch: dict[str, Any]) -> bool:
        with self._lock:
            current = self._records.get(donation_id)
            if current is None or current.status != expected_status:
                return False
            self._replace(current, patch)
            return True

    def bulk_conditional_update(self, criteria: DonationFilter, patch: dict[str, Any]) -> int:
        changed = 0
        with self._lock:
            for record in list(self._candidates(criteria)):
                if criteria.matches(record):
                    self._replace(record, patch)
                    changed += 1
        return changed

    def _candidates(self, criteria: DonationFilter) -> Iterable[Donation]:
        if criteria.statuses is None:
            return list(self._records.values())
        ids = set().union(*(self._by_status[s] for s in criteria.statuses)) if criteria.statuses else set()
        return [self._records[i] for i in ids]

    def _replace(self, current: Donation, patch: dict[str, Any]) -> None:
        updated = apply_patch(current, patch)
        if updated.status != current.status:
            self._by_status[current.status].discard(current.id)
            self._by_status[updated.status].add(current.id)
        self._records[current.id] = updated


def _sort_key(value):
    # None sorts oldest.
    return (value is not None, value)
