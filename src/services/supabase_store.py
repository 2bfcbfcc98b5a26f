"""
Supabase-backed donation store (`food_donations` table).

Conditional updates are single `UPDATE ... WHERE id = ? AND status = ?`
statements, so Postgres row locking gives per-record atomicity.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterator

import httpx
from postgrest.exceptions import APIError

from src.models.donation import Donation, DonationStatus, format_timestamp
from src.services.donation_store import DEFAULT_SORT, DonationFilter, DonationStore
from src.utils.errors import StorageError

logger = logging.getLogger(__name__)

PAGE_SIZE = 500

_TRANSIENT_MARKERS = ("WinError 10035", "httpx.ReadError", "httpcore.ReadError")


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    msg = str(exc)
    return any(marker in msg for marker in _TRANSIENT_MARKERS)


def _execute_with_retry(factory, retries: int = 2, delay_seconds: float = 0.35):
    """
    Small retry wrapper for transient Supabase/httpx transport failures
    (common on Windows dev with HTTP/2).

    Anything still failing after the retries is raised as StorageError.
    """
    for attempt in range(retries + 1):
        try:
            return factory().execute()
        except APIError as exc:
            raise StorageError(f"Supabase rejected the request: {exc.message}") from exc
        except Exception as exc:
            if _is_transient(exc) and attempt < retries:
                time.sleep(delay_seconds)
                continue
            raise StorageError(f"Supabase request failed: {exc}") from exc


def _serialise_patch(patch: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in patch.items():
        if isinstance(value, DonationStatus):
            value = value.value
        elif hasattr(value, "isoformat"):
            value = format_timestamp(value)
        out[key] = value
    return out


class SupabaseDonationStore(DonationStore):
    kind = "supabase"

    def __init__(self, client=None, table: str = "food_donations", page_size: int = PAGE_SIZE):
        self._client = client
        self.table_name = table
        self.page_size = page_size

    @property
    def client(self):
        if self._client is None:
            from src.services.supabase_service import get_supabase

            self._client = get_supabase()
        return self._client

    def _table(self):
        return self.client.table(self.table_name)

    def _apply_filter(self, query, criteria: DonationFilter):
        if criteria.statuses is not None:
            query = query.in_("status", sorted(s.value for s in criteria.statuses))
        if criteria.donor_id is not None:
            query = query.eq("donor_id", criteria.donor_id)
        if criteria.assigned_rider is not None:
            query = query.eq("assigned_rider", criteria.assigned_rider)
        if criteria.expires_before is not None:
            query = query.lt("expiry_date_time", format_timestamp(criteria.expires_before))
        return query

    def insert(self, donation: Donation) -> str:
        row = donation.to_row()
        if row.get("id") is None:
            row.pop("id", None)

        result = _execute_with_retry(lambda: self._table().insert(row))
        if not result.data:
            raise StorageError("Failed to insert donation")
        return str(result.data[0]["id"])

    def find_by_id(self, donation_id: str) -> Donation | None:
        result = _execute_with_retry(lambda: (
            self._table()
            .select("*")
            .eq("id", donation_id)
            .maybe_single()
        ))
        # maybe_single() yields None (or empty data) when no row matches
        if result is None or not result.data:
            return None
        return Donation.from_row(result.data)

    def find_many(self, criteria: DonationFilter, sort: tuple[str, bool] = DEFAULT_SORT) -> Iterator[Donation]:
        field_name, descending = sort
        start = 0
        while True:
            end = start + self.page_size - 1
            result = _execute_with_retry(lambda: (
                self._apply_filter(self._table().select("*"), criteria)
                .order(field_name, desc=descending)
                .range(start, end)
            ))
            rows = result.data or []
            for row in rows:
                yield Donation.from_row(row)
            if len(rows) < self.page_size:
                return
            start += self.page_size

    def conditional_update(self, donation_id: str, expected_status: DonationStatus, patch: dict[str, Any]) -> bool:
        payload = _serialise_patch(patch)
        result = _execute_with_retry(lambda: (
            self._table()
            .update(payload)
            .eq("id", donation_id)
            .eq("status", DonationStatus(expected_status).value)
        ))
        return bool(result.data)

    def bulk_conditional_update(self, criteria: DonationFilter, patch: dict[str, Any]) -> int:
        payload = _serialise_patch(patch)
        result = _execute_with_retry(lambda: self._apply_filter(self._table().update(payload), criteria))
        count = len(result.data or [])
        logger.debug("bulk update touched %s row(s) in %s", count, self.table_name)
        return count
